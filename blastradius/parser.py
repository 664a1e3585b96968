"""Go acceptance-test extractor built on Tree-sitter.

Turns one Go source file into a :class:`~blastradius.models.FileAnalysis`:
declared test and configuration-builder functions, the selector calls and
local bindings inside them, ``[]acceptance.TestStep`` tables, grouped
sequential-invocation tables and the HCL resource mentions embedded in
configuration strings.

Extraction is a pure function of the file content. Nothing here knows about
other files; cross-file resolution happens after every file is extracted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, List, Optional, Tuple

import tree_sitter_go
from tree_sitter import Language, Node as TSNode, Parser as TSParser

from . import config
from .errors import ParseError
from .hcl import scan_literal, unquote_go_string
from .models import (
    CALL_COMPOSITE,
    CALL_EXTERNAL,
    CALL_LOCAL,
    CALL_RECEIVER,
    CallSite,
    FileAnalysis,
    FunctionDecl,
    LocalBinding,
    ReceiverKind,
    ResourceMention,
    SequentialEntry,
    StepEntry,
)
from .predicates import ConfigFunctionPredicate, TemplateFilter

logger = logging.getLogger(__name__)

GO_LANGUAGE = Language(tree_sitter_go.language())

STRING_LITERALS = ("interpreted_string_literal", "raw_string_literal")
REGISTRATION_FUNCTIONS = {"SupportedResources", "SupportedDataSources", "Resources", "DataSources"}
SEQUENCE_PACKAGE = "acceptance"
SEQUENCE_FUNCTION = "RunTestsInSequence"


# ===================================================================
# Options and service derivation
# ===================================================================

@dataclass(frozen=True)
class ExtractOptions:
    """Per-run extraction settings; picklable so worker processes get a copy."""

    resource_prefix: str = field(default_factory=lambda: config.RESOURCE_PREFIX)
    test_prefixes: Tuple[str, ...] = field(default_factory=lambda: config.TEST_PREFIXES)
    test_step_packages: Tuple[str, ...] = field(default_factory=lambda: config.TEST_STEP_PACKAGES)
    predicate: ConfigFunctionPredicate = field(default_factory=TemplateFilter)


def service_for_path(rel_path: str) -> str:
    """Derive the service a file belongs to from its directory path.

    ``internal/services/network/x_test.go`` -> ``network``. Without a
    ``services`` segment the parent directory name is used.
    """
    parts = PurePosixPath(rel_path).parts
    for i, part in enumerate(parts[:-1]):
        if part == "services" and i + 1 < len(parts) - 1:
            return parts[i + 1]
    if len(parts) >= 2:
        return parts[-2]
    return "root"


def relative_path(file_path: Path, repo_root: Optional[Path]) -> str:
    if repo_root is not None:
        try:
            return file_path.resolve().relative_to(repo_root.resolve()).as_posix()
        except ValueError:
            pass
    return file_path.as_posix()


# ===================================================================
# Tree-sitter helpers
# ===================================================================

def _text(node: Optional[TSNode]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _line(node: TSNode) -> int:
    return node.start_point[0] + 1


def _named(node: Optional[TSNode]) -> List[TSNode]:
    if node is None:
        return []
    return [c for c in node.named_children if c.type != "comment"]


def _unwrap(node: Optional[TSNode]) -> Optional[TSNode]:
    """Strip ``literal_element`` and parenthesis wrappers."""
    while node is not None and node.type in ("literal_element", "parenthesized_expression"):
        inner = _named(node)
        if len(inner) != 1:
            break
        node = inner[0]
    return node


def _keyed_parts(node: TSNode) -> Tuple[Optional[TSNode], Optional[TSNode]]:
    key = node.child_by_field_name("key")
    value = node.child_by_field_name("value")
    if key is None or value is None:
        parts = _named(node)
        if len(parts) < 2:
            return None, None
        key, value = parts[0], parts[-1]
    return _unwrap(key), _unwrap(value)


def _literal_body(node: Optional[TSNode]) -> Optional[TSNode]:
    """Return the ``literal_value`` of a composite literal (or the node itself)."""
    node = _unwrap(node)
    if node is None:
        return None
    if node.type == "composite_literal":
        return node.child_by_field_name("body")
    if node.type == "literal_value":
        return node
    return None


def _string_value(node: Optional[TSNode]) -> str:
    if node is None or node.type not in STRING_LITERALS:
        return ""
    return unquote_go_string(_text(node))[0]


def _type_name(node: Optional[TSNode]) -> Tuple[str, bool]:
    """Return ``(bare type name, is_pointer)`` for a type node."""
    if node is None:
        return "", False
    if node.type == "pointer_type":
        inner = _named(node)
        name, _ = _type_name(inner[-1] if inner else None)
        return name, True
    if node.type == "type_identifier":
        return _text(node), False
    if node.type == "qualified_type":
        return _text(node.child_by_field_name("name")), False
    if node.type == "generic_type":
        return _type_name(node.child_by_field_name("type"))
    if node.type == "parenthesized_type":
        inner = _named(node)
        return _type_name(inner[0] if inner else None)
    return "", False


def _composite_struct(node: Optional[TSNode]) -> str:
    """Struct name of ``X{}`` / ``&X{}`` / ``(X{})``, else empty."""
    node = _unwrap(node)
    if node is None:
        return ""
    if node.type == "unary_expression":
        return _composite_struct(node.child_by_field_name("operand"))
    if node.type == "composite_literal":
        type_node = node.child_by_field_name("type")
        if type_node is not None and type_node.type in ("type_identifier", "qualified_type", "generic_type"):
            return _type_name(type_node)[0]
    return ""


def _walk(node: TSNode, skip_check: bool = True) -> Iterator[TSNode]:
    """Pre-order walk; ``Check:`` fields of step literals are never entered."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        for child in reversed(current.named_children):
            if skip_check and child.type == "keyed_element":
                key, _ = _keyed_parts(child)
                if _text(key) == "Check":
                    continue
            stack.append(child)


def _first_error_line(root: TSNode) -> Optional[int]:
    for node in _walk(root, skip_check=False):
        if node.type == "ERROR" or node.is_missing:
            return _line(node)
    # Errors can hide in anonymous children too
    cursor_stack = [root]
    while cursor_stack:
        current = cursor_stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return _line(current)
        if current.has_error:
            cursor_stack.extend(current.children)
    return None


# ===================================================================
# Declarations
# ===================================================================

@dataclass
class _Declaration:
    node: TSNode
    name: str
    line: int
    receiver_var: str = ""
    receiver_type: str = ""
    receiver_pointer: bool = False
    result_types: List[str] = field(default_factory=list)
    body: Optional[TSNode] = None

    @property
    def is_method(self) -> bool:
        return bool(self.receiver_type)


def _result_types(decl: TSNode) -> List[str]:
    result = decl.child_by_field_name("result")
    if result is None:
        return []
    if result.type == "parameter_list":
        return [
            _text(p.child_by_field_name("type"))
            for p in _named(result)
            if p.type == "parameter_declaration"
        ]
    return [_text(result)]


def _declarations(root: TSNode) -> List[_Declaration]:
    decls: List[_Declaration] = []
    for child in root.named_children:
        if child.type not in ("function_declaration", "method_declaration"):
            continue
        name = _text(child.child_by_field_name("name"))
        if not name:
            continue
        decl = _Declaration(
            node=child,
            name=name,
            line=_line(child),
            result_types=_result_types(child),
            body=child.child_by_field_name("body"),
        )
        if child.type == "method_declaration":
            params = [p for p in _named(child.child_by_field_name("receiver"))
                      if p.type == "parameter_declaration"]
            if params:
                decl.receiver_var = _text(params[0].child_by_field_name("name"))
                decl.receiver_type, decl.receiver_pointer = _type_name(
                    params[0].child_by_field_name("type")
                )
        decls.append(decl)
    return decls


def _constructor_type(decl: _Declaration) -> str:
    """First non-error result type of a package-level function."""
    result = decl.node.child_by_field_name("result")
    if result is None:
        return ""
    nodes = ([p.child_by_field_name("type") for p in _named(result) if p.type == "parameter_declaration"]
             if result.type == "parameter_list" else [result])
    for type_node in nodes:
        name, _ = _type_name(type_node)
        if name and name != "error":
            return name
    return ""


# ===================================================================
# Extractor
# ===================================================================

class GoExtractor:
    """Extract acceptance-test structure from Go source files."""

    def __init__(self, options: Optional[ExtractOptions] = None) -> None:
        self.options = options or ExtractOptions()
        self._parser = TSParser(GO_LANGUAGE)

    def extract_file(self, file_path: Path, repo_root: Optional[Path] = None) -> FileAnalysis:
        rel_path = relative_path(file_path, repo_root)
        try:
            source = file_path.read_bytes()
        except OSError as exc:
            logger.warning("Failed to read %s: %s", rel_path, exc)
            return FileAnalysis(path=rel_path, service=service_for_path(rel_path), error=str(exc))
        return self.extract(rel_path, source)

    def parse(self, rel_path: str, source: bytes) -> TSNode:
        """Parse *source*, raising :class:`ParseError` if the tree has syntax errors."""
        root = self._parser.parse(source).root_node
        if root.has_error:
            line = _first_error_line(root)
            raise ParseError(rel_path, f"syntax error near line {line}" if line else "syntax error")
        return root

    def extract(self, rel_path: str, source: bytes) -> FileAnalysis:
        """Extract one file. Syntax errors produce a record with ``error`` set."""
        analysis = FileAnalysis(path=rel_path, service=service_for_path(rel_path))
        try:
            root = self.parse(rel_path, source)
        except ParseError as exc:
            analysis.error = exc.message
            logger.warning("Failed to parse %s: %s", rel_path, exc.message)
            return analysis

        for child in root.named_children:
            if child.type == "package_clause":
                ident = _named(child)
                analysis.package = _text(ident[0]) if ident else ""

        decls = _declarations(root)
        for decl in decls:
            if not decl.is_method:
                ctor = _constructor_type(decl)
                if ctor:
                    analysis.constructors[decl.name] = ctor

        for decl in decls:
            self._extract_registrations(decl, analysis)
            kind = self._classify(decl)
            if kind is None:
                continue
            fn = FunctionDecl(
                name=decl.name,
                line=decl.line,
                struct=decl.receiver_type,
                receiver_var=decl.receiver_var,
                receiver_kind=(
                    (ReceiverKind.POINTER if decl.receiver_pointer else ReceiverKind.VALUE).value
                    if decl.is_method else None
                ),
                returns_text="string" in decl.result_types,
                is_test=kind == "test",
            )
            if kind == "test":
                analysis.test_functions.append(fn)
            else:
                analysis.config_functions.append(fn)
            if decl.body is not None:
                self._extract_body(decl, fn, analysis)

        return analysis

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _classify(self, decl: _Declaration) -> Optional[str]:
        if decl.is_method and self.options.predicate(decl.name, decl.receiver_type, decl.result_types):
            return "config"
        if decl.name.startswith(self.options.test_prefixes):
            return "test"
        if decl.body is not None and self._has_sequential_structure(decl.body):
            return "test"
        return None

    def _has_sequential_structure(self, body: TSNode) -> bool:
        for node in _walk(body):
            if node.type == "call_expression" and self._is_sequence_call(node):
                return True
            if node.type == "composite_literal" and self._is_nested_string_map(node):
                return True
        return False

    # ------------------------------------------------------------------
    # Function bodies
    # ------------------------------------------------------------------

    def _extract_body(self, decl: _Declaration, fn: FunctionDecl, analysis: FileAnalysis) -> None:
        bindings = self._collect_bindings(decl, fn)
        analysis.bindings.extend(bindings)
        bound = {}
        for b in bindings:
            bound.setdefault(b.name, b.line)

        for node in _walk(decl.body):
            if node.type == "call_expression":
                call = self._call_site(node, fn, bound)
                if call is not None:
                    analysis.call_sites.append(call)
                if fn.is_test:
                    analysis.sequential_entries.extend(self._sequence_call_entries(node, fn))
            elif node.type == "composite_literal":
                if self._is_step_table(node):
                    analysis.test_steps.extend(self._steps(node, fn))
            elif fn.is_test and node.type in ("short_var_declaration", "assignment_statement", "var_spec"):
                analysis.sequential_entries.extend(self._map_entries(node, fn))

            if not fn.is_test and node.type in STRING_LITERALS:
                for mention in scan_literal(_text(node), self.options.resource_prefix, _line(node)):
                    analysis.resource_mentions.append(ResourceMention(
                        function=fn.name,
                        function_struct=fn.struct,
                        resource=mention.resource,
                        style=mention.style,
                        context=mention.context,
                        line=mention.line,
                    ))

    def _collect_bindings(self, decl: _Declaration, fn: FunctionDecl) -> List[LocalBinding]:
        bindings: List[LocalBinding] = []
        for node in _walk(decl.body):
            if node.type == "short_var_declaration" or (
                node.type == "assignment_statement" and _text(node.child_by_field_name("operator")) == "="
            ):
                left = _named(node.child_by_field_name("left"))
                right = _named(node.child_by_field_name("right"))
                if not left or not right:
                    continue
                if len(left) > len(right):
                    # r, err := newFooResource(...)
                    pairs = [(left[0], right[0])]
                else:
                    pairs = list(zip(left, right))
                for target, value in pairs:
                    if target.type != "identifier" or _text(target) == "_":
                        continue
                    binding = self._binding_from_value(_text(target), value, node, fn)
                    if binding is not None:
                        bindings.append(binding)
            elif node.type == "var_spec":
                type_node = node.child_by_field_name("type")
                names = node.children_by_field_name("name")
                values = _named(node.child_by_field_name("value"))
                for i, name_node in enumerate(names):
                    if type_node is not None:
                        struct, _ = _type_name(type_node)
                        if struct:
                            bindings.append(LocalBinding(
                                function=fn.name, function_struct=fn.struct,
                                name=_text(name_node), line=_line(node), struct=struct,
                            ))
                    elif i < len(values):
                        binding = self._binding_from_value(_text(name_node), values[i], node, fn)
                        if binding is not None:
                            bindings.append(binding)
        return bindings

    @staticmethod
    def _binding_from_value(
        name: str, value: TSNode, statement: TSNode, fn: FunctionDecl,
    ) -> Optional[LocalBinding]:
        base = dict(function=fn.name, function_struct=fn.struct, name=name, line=_line(statement))
        struct = _composite_struct(value)
        if struct:
            return LocalBinding(struct=struct, **base)
        value = _unwrap(value)
        if value is None or value.type != "call_expression":
            return None
        func = value.child_by_field_name("function")
        if func is None:
            return None
        if func.type == "identifier":
            return LocalBinding(constructor=_text(func), **base)
        if func.type == "selector_expression":
            operand = _unwrap(func.child_by_field_name("operand"))
            method = _text(func.child_by_field_name("field"))
            if operand is not None and operand.type == "identifier":
                return LocalBinding(method=method, receiver_var=_text(operand), **base)
            struct = _composite_struct(operand)
            if struct:
                return LocalBinding(method=method, receiver_var="", struct=struct, **base)
        return None

    @staticmethod
    def _call_site(node: TSNode, fn: FunctionDecl, bound: Dict[str, int]) -> Optional[CallSite]:
        func = node.child_by_field_name("function")
        if func is None or func.type != "selector_expression":
            return None
        operand = _unwrap(func.child_by_field_name("operand"))
        method = _text(func.child_by_field_name("field"))
        if operand is None or not method:
            return None

        line = _line(node)
        composite = ""
        if operand.type == "identifier":
            receiver_expr = _text(operand)
            if fn.receiver_var and receiver_expr == fn.receiver_var:
                kind = CALL_RECEIVER
            elif receiver_expr in bound and bound[receiver_expr] <= line:
                kind = CALL_LOCAL
            else:
                kind = CALL_EXTERNAL
        else:
            receiver_expr = _text(operand)
            composite = _composite_struct(operand)
            kind = CALL_COMPOSITE if composite else CALL_EXTERNAL

        return CallSite(
            caller=fn.name,
            caller_struct=fn.struct,
            line=line,
            receiver_expr=receiver_expr,
            method=method,
            receiver_kind=kind,
            composite_struct=composite,
        )

    # ------------------------------------------------------------------
    # Test step tables
    # ------------------------------------------------------------------

    def _is_step_table(self, node: TSNode) -> bool:
        type_node = node.child_by_field_name("type")
        if type_node is None or type_node.type != "slice_type":
            return False
        element = type_node.child_by_field_name("element")
        if element is None or element.type != "qualified_type":
            return False
        package = _text(element.child_by_field_name("package"))
        return package in self.options.test_step_packages and _text(element.child_by_field_name("name")) == "TestStep"

    def _steps(self, table: TSNode, fn: FunctionDecl) -> List[StepEntry]:
        steps: List[StepEntry] = []
        index = 1
        for element in _named(table.child_by_field_name("body")):
            body = _literal_body(element)
            if body is None:
                continue
            config_value = None
            for field_node in _named(body):
                if field_node.type != "keyed_element":
                    continue
                key, value = _keyed_parts(field_node)
                if _text(key) == "Config":
                    config_value = value
                    break
            if config_value is None:
                continue

            step = StepEntry(
                function=fn.name,
                function_struct=fn.struct,
                index=index,
                line=_line(element),
                config_expr=_text(config_value),
            )
            _parse_config_expression(step, config_value)
            steps.append(step)
            index += 1
        return steps

    # ------------------------------------------------------------------
    # Sequential invocation tables
    # ------------------------------------------------------------------

    @staticmethod
    def _is_sequence_call(node: TSNode) -> bool:
        func = node.child_by_field_name("function")
        if func is None or func.type != "selector_expression":
            return False
        operand = func.child_by_field_name("operand")
        return (_text(operand) == SEQUENCE_PACKAGE
                and _text(func.child_by_field_name("field")) == SEQUENCE_FUNCTION)

    @staticmethod
    def _is_nested_string_map(node: TSNode) -> bool:
        type_node = node.child_by_field_name("type")
        if type_node is None or type_node.type != "map_type":
            return False
        if _text(type_node.child_by_field_name("key")) != "string":
            return False
        inner = type_node.child_by_field_name("value")
        return (inner is not None and inner.type == "map_type"
                and _text(inner.child_by_field_name("key")) == "string")

    def _sequence_call_entries(self, node: TSNode, fn: FunctionDecl) -> List[SequentialEntry]:
        func = node.child_by_field_name("function")
        if func is None or func.type != "selector_expression":
            return []
        args = _named(node.child_by_field_name("arguments"))

        if self._is_sequence_call(node):
            if len(args) < 2:
                return []
            return _grouped_entries(args[1], fn.name, _line(node), "RunTestsInSequence")

        operand = func.child_by_field_name("operand")
        if _text(operand) == "t" and _text(func.child_by_field_name("field")) == "Run" and len(args) >= 2:
            group = _string_value(args[0])
            target = args[1]
            if group and target.type == "identifier":
                return [SequentialEntry(
                    entry_function=fn.name, group=group, key="",
                    target=_text(target), line=_line(node), pattern="SubTest",
                )]
        return []

    def _map_entries(self, node: TSNode, fn: FunctionDecl) -> List[SequentialEntry]:
        if node.type == "var_spec":
            values = _named(node.child_by_field_name("value"))
        else:
            values = _named(node.child_by_field_name("right"))
        entries: List[SequentialEntry] = []
        for value in values:
            value = _unwrap(value)
            if value is not None and value.type == "composite_literal" and self._is_nested_string_map(value):
                entries.extend(_grouped_entries(value, fn.name, _line(node), "MapBased"))
        return entries

    # ------------------------------------------------------------------
    # Resource registrations
    # ------------------------------------------------------------------

    def _extract_registrations(self, decl: _Declaration, analysis: FileAnalysis) -> None:
        if decl.body is None:
            return
        prefix = self.options.resource_prefix
        if decl.name in REGISTRATION_FUNCTIONS:
            for node in _walk(decl.body, skip_check=False):
                if node.type != "composite_literal":
                    continue
                type_node = node.child_by_field_name("type")
                if type_node is None or type_node.type != "map_type":
                    continue
                for element in _named(node.child_by_field_name("body")):
                    if element.type != "keyed_element":
                        continue
                    key, _ = _keyed_parts(element)
                    name = _string_value(key)
                    if name.startswith(prefix) and name not in analysis.registrations:
                        analysis.registrations.append(name)
        elif decl.name == "ResourceType" and decl.is_method:
            for node in _walk(decl.body, skip_check=False):
                if node.type != "return_statement":
                    continue
                results = _named(_first_named(node, "expression_list"))
                if len(results) == 1:
                    name = _string_value(results[0])
                    if name.startswith(prefix) and name not in analysis.registrations:
                        analysis.registrations.append(name)


# ===================================================================
# Module-level helpers
# ===================================================================

def _first_named(node: TSNode, node_type: str) -> Optional[TSNode]:
    for child in node.named_children:
        if child.type == node_type:
            return child
    return None


def _grouped_entries(mapping: TSNode, entry: str, line: int, pattern: str) -> List[SequentialEntry]:
    """Flatten ``{"group": {"key": fn, ...}, ...}`` into entries."""
    entries: List[SequentialEntry] = []
    for outer in _named(_literal_body(mapping)):
        if outer.type != "keyed_element":
            continue
        group_node, inner = _keyed_parts(outer)
        group = _string_value(group_node)
        if not group:
            continue
        for element in _named(_literal_body(inner)):
            if element.type != "keyed_element":
                continue
            key_node, target = _keyed_parts(element)
            key = _string_value(key_node)
            if key and target is not None and target.type == "identifier":
                entries.append(SequentialEntry(
                    entry_function=entry, group=group, key=key,
                    target=_text(target), line=line, pattern=pattern,
                ))
    return entries


def _parse_config_expression(step: StepEntry, expr: Optional[TSNode]) -> None:
    """Fill variable/method/struct of a step from its ``Config`` expression.

    Handles ``r.basic(data)``, ``X{}.basic(data)``, a bare bound variable and
    ``func(...) string { return r.basic(data) }``.
    """
    expr = _unwrap(expr)
    if expr is None:
        return
    if expr.type == "call_expression":
        func = _unwrap(expr.child_by_field_name("function"))
        if func is None:
            return
        if func.type == "func_literal":
            _parse_config_expression(step, func)
        elif func.type == "selector_expression":
            step.config_method = _text(func.child_by_field_name("field"))
            operand = _unwrap(func.child_by_field_name("operand"))
            if operand is not None and operand.type == "identifier":
                step.config_variable = _text(operand)
            else:
                step.config_struct = _composite_struct(operand)
        elif func.type == "identifier":
            step.config_method = _text(func)
    elif expr.type == "identifier":
        step.config_variable = _text(expr)
    elif expr.type == "func_literal":
        for node in _walk(expr.child_by_field_name("body")):
            if node.type == "return_statement":
                results = _named(_first_named(node, "expression_list"))
                if results:
                    _parse_config_expression(step, results[0])
                return


# ===================================================================
# Worker entry point (Stage A)
# ===================================================================

_WORKER_EXTRACTORS: Dict[ExtractOptions, GoExtractor] = {}


def analyze_file(path: str, repo_root: Optional[str], options: ExtractOptions) -> FileAnalysis:
    """Extract a single file; safe to run in a worker process.

    Unexpected failures are folded into the record so one bad file never
    aborts a build.
    """
    extractor = _WORKER_EXTRACTORS.get(options)
    if extractor is None:
        extractor = GoExtractor(options)
        _WORKER_EXTRACTORS[options] = extractor

    root = Path(repo_root) if repo_root else None
    try:
        return extractor.extract_file(Path(path), root)
    except (ValueError, RuntimeError) as exc:
        rel = relative_path(Path(path), root)
        logger.warning("Failed to parse %s: %s", rel, exc)
        return FileAnalysis(path=rel, service=service_for_path(rel), error=str(exc))


def extract_source(rel_path: str, source: str, options: Optional[ExtractOptions] = None) -> FileAnalysis:
    """Convenience wrapper for in-memory sources (used by tests and tooling)."""
    return GoExtractor(options).extract(rel_path, source.encode("utf-8"))

