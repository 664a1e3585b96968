"""Pluggable classification of configuration-builder functions.

Which methods count as configuration builders is a heuristic. The extractor
only ever calls a :class:`ConfigFunctionPredicate`, so the default
:class:`TemplateFilter` can be tuned through ``config.toml`` or replaced
with any callable of the same shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

from .config_manager import DEFAULT_ANALYSIS_CONFIG


class ConfigFunctionPredicate(Protocol):
    def __call__(self, name: str, receiver_type: str, result_types: Sequence[str]) -> bool:
        ...


def _tuple(key: str) -> Tuple[str, ...]:
    return tuple(DEFAULT_ANALYSIS_CONFIG[key])


@dataclass(frozen=True)
class TemplateFilter:
    """Accept receiver methods that return text and are not infrastructure helpers.

    Instances are plain data so they pickle cleanly into worker processes.
    """

    receiver_suffixes: Tuple[str, ...] = field(default_factory=lambda: _tuple("receiver_suffixes"))
    excluded_names: Tuple[str, ...] = field(default_factory=lambda: _tuple("excluded_names"))
    excluded_prefixes: Tuple[str, ...] = field(default_factory=lambda: _tuple("excluded_prefixes"))
    excluded_suffixes: Tuple[str, ...] = field(default_factory=lambda: _tuple("excluded_suffixes"))

    @classmethod
    def from_config(cls, analysis: Optional[Dict[str, Any]] = None) -> "TemplateFilter":
        analysis = analysis or DEFAULT_ANALYSIS_CONFIG
        return cls(
            receiver_suffixes=tuple(analysis["receiver_suffixes"]),
            excluded_names=tuple(analysis["excluded_names"]),
            excluded_prefixes=tuple(analysis["excluded_prefixes"]),
            excluded_suffixes=tuple(analysis["excluded_suffixes"]),
        )

    def __call__(self, name: str, receiver_type: str, result_types: Sequence[str]) -> bool:
        if not receiver_type or "string" not in result_types:
            return False
        if self.receiver_suffixes and not receiver_type.endswith(self.receiver_suffixes):
            return False
        return not self.is_infrastructure_helper(name)

    def is_infrastructure_helper(self, name: str) -> bool:
        if name in self.excluded_names:
            return True
        if self.excluded_prefixes and name.startswith(self.excluded_prefixes):
            return True
        return bool(self.excluded_suffixes) and name.endswith(self.excluded_suffixes)
