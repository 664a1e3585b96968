"""Call resolution, store population and call-chain walking (Stage B)."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .models import (
    CALL_COMPOSITE,
    CALL_LOCAL,
    CALL_RECEIVER,
    CallSite,
    ReferenceType,
    ResolutionStatus,
    ResolvedCall,
    StepEntry,
)
from .storage import GraphStore
from .symbols import Symbol, SymbolIndex, SymbolKey

logger = logging.getLogger(__name__)


# ===================================================================
# Call resolution
# ===================================================================

class CallResolver:
    """Resolve receiver expressions to structs and calls to config functions.

    Resolution is best effort: anything that cannot be followed comes back
    as ``UNRESOLVED_EXTERNAL`` instead of raising.
    """

    def __init__(self, index: SymbolIndex) -> None:
        self.index = index
        self.stats: Counter = Counter()
        self.unresolved: List[ResolvedCall] = []

    def variable_struct(self, path: str, function: str, function_struct: str, name: str, line: int) -> str:
        decl = self.index.function_decl(path, function, function_struct)
        if decl is not None and decl.receiver_var and decl.receiver_var == name:
            return function_struct
        binding = self.index.binding_before(path, function, function_struct, name, line)
        if binding is None or binding.method:
            return ""
        if binding.struct:
            return binding.struct
        directory = path.rsplit("/", 1)[0] if "/" in path else ""
        return self.index.constructor_type(binding.constructor, directory)

    def receiver_struct(self, path: str, call: CallSite) -> str:
        if call.receiver_kind == CALL_RECEIVER:
            return call.caller_struct
        if call.receiver_kind == CALL_COMPOSITE:
            return call.composite_struct
        if call.receiver_kind == CALL_LOCAL:
            return self.variable_struct(path, call.caller, call.caller_struct, call.receiver_expr, call.line)
        return ""

    def resolve_call(self, path: str, call: CallSite) -> ResolvedCall:
        struct = self.receiver_struct(path, call)
        target = self.index.config(struct, call.method)
        if target is None:
            status = ResolutionStatus.UNRESOLVED_EXTERNAL
            logger.debug(
                "Unresolved call %s.%s at %s:%d (%s)",
                call.receiver_expr, call.method, path, call.line, call.caller,
            )
        elif target.path == path:
            status = ResolutionStatus.LOCAL_RESOLVED
        else:
            status = ResolutionStatus.CROSS_FILE_RESOLVED
        self.stats[status.value] += 1
        resolved = ResolvedCall(
            caller_file=path,
            caller=call.caller,
            caller_struct=call.caller_struct,
            line=call.line,
            receiver=call.receiver_expr,
            method=call.method,
            status=status,
            target_struct=target.struct if target else "",
        )
        if target is None:
            self.unresolved.append(resolved)
        return resolved

    def resolve_step(self, path: str, step: StepEntry) -> Optional[Symbol]:
        """Find the config function a test step's ``Config`` expression invokes."""
        if step.config_method:
            if step.config_struct:
                struct = step.config_struct
            elif step.config_variable:
                struct = self.variable_struct(
                    path, step.function, step.function_struct, step.config_variable, step.line,
                )
            else:
                return None
            return self.index.config(struct, step.config_method)

        if step.config_variable:
            binding = self.index.binding_before(
                path, step.function, step.function_struct, step.config_variable, step.line,
            )
            if binding is not None and binding.method:
                struct = binding.struct or self.variable_struct(
                    path, step.function, step.function_struct, binding.receiver_var, binding.line,
                )
                return self.index.config(struct, binding.method)
        return None

    def call_graph(self) -> Dict[SymbolKey, List[SymbolKey]]:
        """Directed graph among config functions, callees in source order.

        Every call site in the corpus is resolved once so the resolution
        counters cover test functions too.
        """
        graph: Dict[SymbolKey, List[SymbolKey]] = {key: [] for key in self.index.configs}
        for path, analysis in self.index.files.items():
            for call in analysis.call_sites:
                resolved = self.resolve_call(path, call)
                caller = self.index.config(call.caller_struct, call.caller)
                if caller is None or caller.path != path or resolved.status == ResolutionStatus.UNRESOLVED_EXTERNAL:
                    continue
                callee = (resolved.target_struct, resolved.method)
                if callee not in graph[caller.key]:
                    graph[caller.key].append(callee)
        return graph


# ===================================================================
# Resource closure
# ===================================================================

class ResourceClosure:
    """Memoized reachability of direct resource references over the call graph."""

    def __init__(self, graph: Dict[SymbolKey, List[SymbolKey]], direct: Dict[SymbolKey, Set[int]]) -> None:
        self.graph = graph
        self.direct = direct
        self._memo: Dict[SymbolKey, frozenset] = {}

    def resources(self, start: SymbolKey) -> frozenset:
        cached = self._memo.get(start)
        if cached is not None:
            return cached
        seen = {start}
        queue = [start]
        found: Set[int] = set()
        while queue:
            node = queue.pop()
            found.update(self.direct.get(node, ()))
            for callee in self.graph.get(node, ()):
                if callee not in seen:
                    seen.add(callee)
                    queue.append(callee)
        result = frozenset(found)
        self._memo[start] = result
        return result


# ===================================================================
# Store population
# ===================================================================

class DependencyResolver:
    """Populate a :class:`GraphStore` from a completed :class:`SymbolIndex`.

    Runs single-threaded after extraction so surrogate ids are assigned in a
    deterministic order (files sorted by path, declarations in source order).
    """

    def __init__(self, index: SymbolIndex, store: GraphStore, resources: Iterable[str] = ()) -> None:
        self.index = index
        self.store = store
        self.targets: List[str] = list(dict.fromkeys(resources))
        self.calls = CallResolver(index)
        self.config_ids: Dict[SymbolKey, int] = {}
        self.test_ids: Dict[SymbolKey, int] = {}
        self.service_ids: Dict[str, int] = {}
        self.file_ids: Dict[str, int] = {}
        self.steps_created = 0
        self.steps_skipped = 0
        self.edges_created = 0

    def run(self) -> Dict[str, int]:
        for name in self.targets:
            self.store.resource_id(name)
        self._register_files()
        self._register_resources()
        self._register_functions()
        direct = self._direct_references()
        graph = self.calls.call_graph()
        closure = ResourceClosure(graph, direct)
        self._steps_and_chains(graph, closure)
        logger.info(
            "Resolved %d test steps (%d skipped), %d chain edges",
            self.steps_created, self.steps_skipped, self.edges_created,
        )
        return dict(self.calls.stats)

    # ------------------------------------------------------------------
    # Lookups and declarations
    # ------------------------------------------------------------------

    def _register_files(self) -> None:
        for path, analysis in sorted(self.index.files.items()):
            service_id = self.store.service_id(analysis.service)
            self.service_ids[path] = service_id
            self.file_ids[path] = self.store.file_id(path, service_id)

    def _register_resources(self) -> None:
        for path, analysis in sorted(self.index.files.items()):
            for name in analysis.registrations:
                self.store.registration_id(name, self.service_ids[path])
        for name in self.targets:
            self.store.registration_id(name, None)

    def _register_functions(self) -> None:
        for path, analysis in sorted(self.index.files.items()):
            for decl in analysis.config_functions:
                symbol = self.index.config(decl.struct, decl.name)
                if symbol is None or symbol.path != path or symbol.key in self.config_ids:
                    continue
                self.config_ids[symbol.key] = self.store.add_config_function(
                    name=decl.name,
                    line=decl.line,
                    file_id=self.file_ids[path],
                    struct_id=self.store.struct_id(decl.struct),
                    receiver_kind=decl.receiver_kind or "value",
                    returns_text=decl.returns_text,
                )
            for decl in analysis.test_functions:
                symbol = self.index.test_at(path, decl.name)
                if symbol is None or symbol.decl is not decl or symbol.key in self.test_ids:
                    continue
                self.test_ids[symbol.key] = self.store.add_test_function(
                    name=decl.name,
                    line=decl.line,
                    file_id=self.file_ids[path],
                    struct_id=self.store.struct_id(symbol.struct) if symbol.struct else None,
                )

    def _direct_references(self) -> Dict[SymbolKey, Set[int]]:
        wanted = set(self.targets)
        direct: Dict[SymbolKey, Set[int]] = {}
        for path, analysis in sorted(self.index.files.items()):
            for mention in analysis.resource_mentions:
                if wanted and mention.resource not in wanted:
                    continue
                symbol = self.index.config(mention.function_struct, mention.function)
                if symbol is None or symbol.path != path:
                    continue
                resource_id = self.store.resource_id(mention.resource)
                self.store.add_direct_reference(
                    config_function_id=self.config_ids[symbol.key],
                    resource_id=resource_id,
                    reference_type=ReferenceType[mention.style],
                    context=mention.context,
                    line=mention.line,
                )
                direct.setdefault(symbol.key, set()).add(resource_id)
        return direct

    # ------------------------------------------------------------------
    # Steps and chains
    # ------------------------------------------------------------------

    def _steps_and_chains(self, graph: Dict[SymbolKey, List[SymbolKey]], closure: ResourceClosure) -> None:
        for path, analysis in sorted(self.index.files.items()):
            for step in analysis.test_steps:
                test = self._test_for_step(path, step)
                if test is None:
                    self.steps_skipped += 1
                    logger.debug(
                        "Skipping step %d of %s in %s: test function not registered (duplicate declaration)",
                        step.index, step.function, path,
                    )
                    continue
                target = self.calls.resolve_step(path, step)
                if target is None:
                    self.steps_skipped += 1
                    logger.debug("Skipping step %d of %s in %s: %s", step.index, step.function, path, step.config_expr)
                    continue

                reference_type = ReferenceType.for_step(
                    same_file=target.path == path, same_struct=target.struct == test.struct,
                )
                step_id = self.store.add_test_step(
                    test_function_id=self.test_ids[test.key],
                    config_function_id=self.config_ids[target.key],
                    step_index=step.index,
                    target_struct_id=self.store.struct_id(target.struct),
                    target_service_id=self.service_ids[target.path],
                    reference_type=reference_type,
                    line=step.line,
                )
                self.steps_created += 1
                self._walk_chain(step_id, target.key, path, self.service_ids[path], graph, closure)

    def _test_for_step(self, path: str, step: StepEntry) -> Optional[Symbol]:
        symbol = self.index.test_at(path, step.function)
        if symbol is None or symbol.decl.struct != step.function_struct or symbol.key not in self.test_ids:
            return None
        return symbol

    def _walk_chain(
        self,
        step_id: int,
        root: SymbolKey,
        test_path: str,
        test_service_id: int,
        graph: Dict[SymbolKey, List[SymbolKey]],
        closure: ResourceClosure,
    ) -> None:
        """Iterative depth-first walk emitting one edge per call on each path.

        Each stack frame carries the functions already on its path, so a call
        back into one of them ends that branch. A function reached along two
        paths gets an edge on each, with that path's depth.
        """
        stack: List[Tuple[SymbolKey, Optional[SymbolKey], Optional[int], int, FrozenSet[SymbolKey]]] = [
            (root, None, None, 0, frozenset())
        ]
        while stack:
            target, source, parent_edge, depth, ancestors = stack.pop()
            target_symbol = self.index.configs[target]
            if source is not None:
                source_symbol = self.index.configs[source]
                source_path, source_service = source_symbol.path, self.service_ids[source_symbol.path]
            else:
                source_path, source_service = test_path, test_service_id
            edge_id = self.store.add_chain_edge(
                test_step_id=step_id,
                parent_edge_id=parent_edge,
                source_function_id=self.config_ids[source] if source is not None else None,
                target_function_id=self.config_ids[target],
                source_service_id=source_service,
                target_service_id=self.service_ids[target_symbol.path],
                depth=depth,
                same_file=source_path == target_symbol.path,
            )
            self.edges_created += 1
            self.store.add_closure(edge_id, closure.resources(target))

            on_path = ancestors | {target}
            for callee in reversed(graph.get(target, [])):
                if callee not in on_path:
                    stack.append((callee, target, edge_id, depth + 1, on_path))
