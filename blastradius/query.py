"""Read-only blast-radius queries over a frozen dependency store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .models import QueryCatalog, QueryResult, ReferenceType
from .storage import GraphStore

logger = logging.getLogger(__name__)

OPERATIONS = ["direct", "indirect", "combined"]


@dataclass
class AffectedTest:
    """A test function pulled in by an indirect query, with its visibility."""

    test_id: int
    result: QueryResult
    public: bool
    is_stub: bool


class BlastRadiusQuery:
    """Answer direct / indirect / combined questions for resource names.

    The store is frozen on construction; every method is a pure read, so one
    instance can serve concurrent callers.
    """

    def __init__(self, store: GraphStore) -> None:
        if not store.frozen:
            store.freeze()
        self.store = store

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, operation: Optional[str] = None, *resources: str):
        """Dispatch an operation; no operation returns the catalog."""
        if operation is None:
            return self.catalog()
        if operation == "direct":
            return _dedupe(row for name in resources for row in self.direct(name))
        if operation == "indirect":
            return _dedupe(row for name in resources for row in self.indirect(name))
        if operation == "combined":
            return self.combined(*resources)
        raise ValueError(f"Unknown operation '{operation}'. Choose from: {', '.join(OPERATIONS)}")

    def catalog(self) -> QueryCatalog:
        rows = self.store.fetchall(
            """
            SELECT r.name AS resource, s.name AS service
            FROM Resource r
            LEFT JOIN ResourceRegistration rr ON rr.name = r.name
            LEFT JOIN Service s ON s.id = rr.owningServiceId
            ORDER BY r.name
            """
        )
        return QueryCatalog(
            operations=list(OPERATIONS),
            resources={row["resource"]: row["service"] for row in rows},
        )

    # ------------------------------------------------------------------
    # Direct
    # ------------------------------------------------------------------

    def direct(self, resource: str) -> List[QueryResult]:
        rows = self.store.fetchall(
            """
            SELECT f.path, s.name AS service, cf.name AS function, st.name AS struct,
                   d.line, d.context, rt.name AS style
            FROM DirectResourceReference d
            JOIN Resource r ON r.id = d.resourceId
            JOIN ConfigFunction cf ON cf.id = d.configFunctionId
            JOIN Struct st ON st.id = cf.structId
            JOIN File f ON f.id = cf.fileId
            JOIN Service s ON s.id = f.serviceId
            JOIN ReferenceType rt ON rt.id = d.referenceTypeId
            WHERE r.name = ?
            ORDER BY f.path, d.line, d.id
            """,
            (resource,),
        )
        return [
            QueryResult(
                origin="direct",
                resource=resource,
                file_path=row["path"],
                function=f"{row['struct']}.{row['function']}",
                line=row["line"],
                service=row["service"],
                reference_style=row["style"],
                context=row["context"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Indirect
    # ------------------------------------------------------------------

    def indirect(self, resource: str) -> List[QueryResult]:
        return [affected.result for affected in self.affected_tests(resource)]

    def affected_tests(self, resource: str) -> List[AffectedTest]:
        """Tests reached through step chains, then through sequential links."""
        row = self.store.fetchone("SELECT id FROM Resource WHERE name = ?", (resource,))
        if row is None:
            return []
        resource_id = row["id"]

        mentioning = {
            r["configFunctionId"]
            for r in self.store.fetchall(
                "SELECT DISTINCT configFunctionId FROM DirectResourceReference WHERE resourceId = ?",
                (resource_id,),
            )
        }
        steps = self.store.fetchall(
            """
            SELECT e.testStepId, ts.testFunctionId
            FROM CallChainEdge e
            JOIN ChainResourceClosure c ON c.chainEdgeId = e.id
            JOIN TestStep ts ON ts.id = e.testStepId
            WHERE e.depth = 0 AND c.resourceId = ?
            ORDER BY e.testStepId
            """,
            (resource_id,),
        )

        # test id -> (chain depth, crosses boundary)
        reach: Dict[int, List] = {}
        for step in steps:
            depth, crosses = self._step_reach(step["testStepId"], mentioning)
            if depth is None:
                continue
            current = reach.get(step["testFunctionId"])
            if current is None:
                reach[step["testFunctionId"]] = [depth, crosses]
            else:
                current[0] = min(current[0], depth)
                current[1] = current[1] or crosses

        chained = [
            self._affected(test_id, resource, "indirect", depth, crosses)
            for test_id, (depth, crosses) in reach.items()
        ]
        chained.sort(key=_sort_key)
        included: Dict[int, AffectedTest] = {a.test_id: a for a in chained}
        return chained + self._sequential_expansion(resource, included)

    def _step_reach(self, step_id: int, mentioning: Set[int]):
        """Nearest mentioning hop and boundary crossing for one step's chain."""
        edges = {
            e["id"]: e
            for e in self.store.fetchall(
                """
                SELECT id, parentEdgeId, targetConfigFunctionId, depth, crossesBoundary
                FROM CallChainEdge WHERE testStepId = ?
                """,
                (step_id,),
            )
        }
        depth: Optional[int] = None
        crosses = False
        for edge in edges.values():
            if edge["targetConfigFunctionId"] not in mentioning:
                continue
            hops = edge["depth"] + 1
            depth = hops if depth is None else min(depth, hops)
            node = edge
            while node is not None and not crosses:
                crosses = bool(node["crossesBoundary"])
                parent = node["parentEdgeId"]
                node = edges.get(parent) if parent is not None else None
        return depth, crosses

    def _sequential_expansion(self, resource: str, included: Dict[int, AffectedTest]) -> List[AffectedTest]:
        added: List[AffectedTest] = []
        frontier = list(included)
        while frontier:
            placeholders = ", ".join("?" for _ in frontier)
            rows = self.store.fetchall(
                f"""
                SELECT entryPointFunctionId, referencedFunctionId, "group", "key"
                FROM SequentialReference
                WHERE referencedFunctionId IN ({placeholders})
                ORDER BY id
                """,
                frontier,
            )
            frontier = []
            for row in rows:
                entry_id = row["entryPointFunctionId"]
                if entry_id in included:
                    continue
                source = included[row["referencedFunctionId"]].result
                via = f"{row['group']}/{row['key']}" if row["key"] else row["group"]
                affected = self._affected(
                    entry_id, resource, "sequential", source.chain_depth, source.crosses_boundary, via,
                )
                included[entry_id] = affected
                added.append(affected)
                frontier.append(entry_id)
        added.sort(key=_sort_key)
        return added

    def _affected(
        self, test_id: int, resource: str, origin: str, depth: int, crosses: bool, via: str = "",
    ) -> AffectedTest:
        row = self.store.fetchone(
            """
            SELECT t.name, t.line, t.visibilityTypeId, f.path, s.name AS service
            FROM TestFunction t
            LEFT JOIN File f ON f.id = t.fileId
            LEFT JOIN Service s ON s.id = f.serviceId
            WHERE t.id = ?
            """,
            (test_id,),
        )
        result = QueryResult(
            origin=origin,
            resource=resource,
            file_path=row["path"] or "",
            function=row["name"],
            line=row["line"],
            chain_depth=depth,
            crosses_boundary=crosses,
            service=row["service"] or "",
            via=via,
        )
        return AffectedTest(
            test_id=test_id,
            result=result,
            public=row["visibilityTypeId"] == ReferenceType.PUBLIC_REFERENCE.id,
            is_stub=row["path"] is None,
        )

    # ------------------------------------------------------------------
    # Combined
    # ------------------------------------------------------------------

    def combined(self, *resources: str) -> List[QueryResult]:
        rows: List[QueryResult] = []
        for name in resources:
            rows.extend(self.direct(name))
            rows.extend(self.indirect(name))
        return _dedupe(rows)


def _sort_key(affected: AffectedTest):
    r = affected.result
    return (r.file_path, r.line, r.function)


def _dedupe(rows: Iterable[QueryResult]) -> List[QueryResult]:
    seen = set()
    unique = []
    for row in rows:
        if row.key in seen:
            continue
        seen.add(row.key)
        unique.append(row)
    return unique
