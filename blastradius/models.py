"""Core data models shared by extraction, resolution, storage and queries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ===================================================================
# Closed classifications
# ===================================================================

class ReferenceType(Enum):
    """Every relationship classification the store knows about.

    Values are ``(id, category)`` pairs; the ids are stable because they are
    persisted in the ``ReferenceType`` table and referenced by relationship
    rows.
    """

    SELF_CONTAINED = (1, "test-to-configuration")
    EMBEDDED_CROSS_STRUCT = (2, "test-to-configuration")
    CROSS_FILE_SAME_STRUCT = (3, "test-to-configuration")
    CROSS_FILE_CROSS_STRUCT = (4, "test-to-configuration")
    EMBEDDED_REFERENCE = (5, "file-locality")
    CROSS_FILE_REFERENCE = (6, "file-locality")
    RESOURCE_BLOCK = (7, "reference-style")
    ATTRIBUTE_REFERENCE = (8, "reference-style")
    SAME_SERVICE = (9, "service-boundary")
    CROSS_SERVICE = (10, "service-boundary")
    PRIVATE_REFERENCE = (11, "visibility")
    PUBLIC_REFERENCE = (12, "visibility")
    SEQUENTIAL_REFERENCE = (13, "dependency-kind")
    EXTERNAL_STUB_REFERENCE = (14, "dependency-kind")

    @property
    def id(self) -> int:
        return self.value[0]

    @property
    def category(self) -> str:
        return self.value[1]

    @classmethod
    def for_step(cls, same_file: bool, same_struct: bool) -> "ReferenceType":
        if same_file:
            return cls.SELF_CONTAINED if same_struct else cls.EMBEDDED_CROSS_STRUCT
        return cls.CROSS_FILE_SAME_STRUCT if same_struct else cls.CROSS_FILE_CROSS_STRUCT


class ResolutionStatus(str, Enum):
    LOCAL_RESOLVED = "LOCAL_RESOLVED"
    CROSS_FILE_RESOLVED = "CROSS_FILE_RESOLVED"
    UNRESOLVED_EXTERNAL = "UNRESOLVED_EXTERNAL"


class ReceiverKind(str, Enum):
    VALUE = "value"
    POINTER = "pointer"


# Where a call's receiver expression comes from.
CALL_RECEIVER = "receiver"
CALL_LOCAL = "local"
CALL_COMPOSITE = "composite"
CALL_EXTERNAL = "external"


# ===================================================================
# Per-file extraction record (Stage A output)
# ===================================================================

@dataclass
class FunctionDecl:
    name: str
    line: int
    struct: str = ""
    receiver_var: str = ""
    receiver_kind: Optional[str] = None
    returns_text: bool = False
    is_test: bool = False


@dataclass
class CallSite:
    """A selector call ``receiver.method(...)`` inside a tracked function."""
    caller: str
    caller_struct: str
    line: int
    receiver_expr: str
    method: str
    receiver_kind: str
    composite_struct: str = ""


@dataclass
class LocalBinding:
    """A local variable bound inside a function body.

    A struct literal or typed declaration sets ``struct``; a constructor
    call sets ``constructor``. A method call whose result is the variable
    sets ``method`` and names the receiver through ``receiver_var`` or, for
    a composite-literal receiver, through ``struct``.
    """
    function: str
    function_struct: str
    name: str
    line: int
    struct: str = ""
    constructor: str = ""
    method: str = ""
    receiver_var: str = ""


@dataclass
class StepEntry:
    function: str
    function_struct: str
    index: int
    line: int
    config_expr: str
    config_variable: str = ""
    config_method: str = ""
    config_struct: str = ""


@dataclass
class SequentialEntry:
    entry_function: str
    group: str
    key: str
    target: str
    line: int
    pattern: str


@dataclass
class ResourceMention:
    function: str
    function_struct: str
    resource: str
    style: str
    context: str
    line: int


@dataclass
class FileAnalysis:
    """Everything the extractor learned about one source file."""
    path: str
    service: str
    package: str = ""
    test_functions: List[FunctionDecl] = field(default_factory=list)
    config_functions: List[FunctionDecl] = field(default_factory=list)
    constructors: Dict[str, str] = field(default_factory=dict)
    call_sites: List[CallSite] = field(default_factory=list)
    bindings: List[LocalBinding] = field(default_factory=list)
    test_steps: List[StepEntry] = field(default_factory=list)
    sequential_entries: List[SequentialEntry] = field(default_factory=list)
    resource_mentions: List[ResourceMention] = field(default_factory=list)
    registrations: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def directory(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ===================================================================
# Build / query results
# ===================================================================

@dataclass
class ResolvedCall:
    """Outcome of resolving one call site; unresolved ones are kept for the build summary."""
    caller_file: str
    caller: str
    caller_struct: str
    line: int
    receiver: str
    method: str
    status: ResolutionStatus
    target_struct: str = ""


@dataclass
class TestInvocation:
    service: str
    resource: str
    package_dir: str
    tests: List[str] = field(default_factory=list)


@dataclass
class BuildSummary:
    files_total: int = 0
    files_parsed: int = 0
    files_skipped: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    resolution: Dict[str, int] = field(default_factory=dict)
    steps_skipped: int = 0
    stubs_created: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    invocations: List[TestInvocation] = field(default_factory=list)
    unresolved_calls: List[ResolvedCall] = field(default_factory=list)


@dataclass(frozen=True)
class QueryResult:
    origin: str
    resource: str
    file_path: str
    function: str
    line: int
    chain_depth: int = 0
    crosses_boundary: bool = False
    service: str = ""
    reference_style: str = ""
    context: str = ""
    via: str = ""

    @property
    def key(self) -> tuple:
        return (self.origin, self.resource, self.file_path, self.function, self.line)


@dataclass
class QueryCatalog:
    operations: List[str]
    resources: Dict[str, Optional[str]]
