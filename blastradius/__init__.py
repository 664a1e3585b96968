"""BlastRadius: find the acceptance tests affected by a resource change."""

__version__ = "0.1.0"
