"""Persistence layer for blast-radius dependency stores.

Architecture:
- **SQLite** (in memory) holds the normalized tables while a build runs and
  while queries are answered. Foreign keys are enforced by the engine.
- **CSV** files, one per table, are the persisted form. A project directory
  keeps them under ``tables/`` next to ``project.json`` build metadata.
"""

from __future__ import annotations

import csv
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import MEMORY_DIR, STATE_FILE, TABLES_DIRNAME, ensure_base_dirs
from .errors import IntegrityViolation, StoreFrozenError, StoreLoadError
from .models import ReferenceType

logger = logging.getLogger(__name__)


# ===================================================================
# ProjectManager  (manages directories / active project)
# ===================================================================

class ProjectManager:
    """Manage persisted store directories and active project state."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, project_name: str) -> Path:
        return MEMORY_DIR / project_name

    def tables_dir(self, project_name: str) -> Path:
        return self.project_dir(project_name) / TABLES_DIRNAME

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set_current_project(self, project_name: Optional[str]) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": project_name}, indent=2),
            encoding="utf-8",
        )

    def get_current_project(self) -> Optional[str]:
        if not STATE_FILE.exists():
            return None
        try:
            payload = json.loads(STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        return payload.get("current_project")

    def unload_project(self) -> None:
        self.set_current_project(None)

    def delete_project(self, project_name: str) -> bool:
        path = self.project_dir(project_name)
        if not path.exists():
            return False
        for child in sorted(path.glob("**/*"), reverse=True):
            if child.is_file():
                child.unlink()
            elif child.is_dir():
                child.rmdir()
        path.rmdir()
        if self.get_current_project() == project_name:
            self.unload_project()
        return True

    # ------------------------------------------------------------------
    # Store persistence
    # ------------------------------------------------------------------

    def save_store(self, project_name: str, store: "GraphStore", metadata: Dict[str, Any]) -> Path:
        path = self.create_or_get_project(project_name)
        store.export_tables(path / TABLES_DIRNAME)
        (path / "project.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        return path

    def load_store(self, project_name: str) -> "GraphStore":
        return GraphStore.load_tables(self.tables_dir(project_name))

    def get_metadata(self, project_name: str) -> Dict[str, Any]:
        meta_path = self.project_dir(project_name) / "project.json"
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}


# ===================================================================
# Schema
# ===================================================================

# Creation order doubles as load order: every table only references
# tables that appear before it.
SCHEMA: List[Tuple[str, str]] = [
    ("ReferenceType", """
        CREATE TABLE ReferenceType (
            id       INTEGER PRIMARY KEY,
            name     TEXT NOT NULL UNIQUE,
            category TEXT NOT NULL
        )
    """),
    ("Resource", """
        CREATE TABLE Resource (
            id   INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE
        )
    """),
    ("Service", """
        CREATE TABLE Service (
            id   INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE
        )
    """),
    ("ResourceRegistration", """
        CREATE TABLE ResourceRegistration (
            id               INTEGER PRIMARY KEY,
            owningServiceId  INTEGER REFERENCES Service(id),
            name             TEXT NOT NULL UNIQUE
        )
    """),
    ("File", """
        CREATE TABLE File (
            id        INTEGER PRIMARY KEY,
            path      TEXT NOT NULL UNIQUE,
            serviceId INTEGER NOT NULL REFERENCES Service(id)
        )
    """),
    ("Struct", """
        CREATE TABLE Struct (
            id   INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE
        )
    """),
    ("TestFunction", """
        CREATE TABLE TestFunction (
            id               INTEGER PRIMARY KEY,
            fileId           INTEGER REFERENCES File(id),
            structId         INTEGER REFERENCES Struct(id),
            name             TEXT NOT NULL,
            line             INTEGER NOT NULL,
            visibilityTypeId INTEGER NOT NULL REFERENCES ReferenceType(id)
        )
    """),
    ("ConfigFunction", """
        CREATE TABLE ConfigFunction (
            id           INTEGER PRIMARY KEY,
            fileId       INTEGER NOT NULL REFERENCES File(id),
            structId     INTEGER NOT NULL REFERENCES Struct(id),
            name         TEXT NOT NULL,
            receiverKind TEXT NOT NULL,
            returnsText  INTEGER NOT NULL,
            line         INTEGER NOT NULL
        )
    """),
    ("TestStep", """
        CREATE TABLE TestStep (
            id               INTEGER PRIMARY KEY,
            testFunctionId   INTEGER NOT NULL REFERENCES TestFunction(id),
            configFunctionId INTEGER NOT NULL REFERENCES ConfigFunction(id),
            stepIndex        INTEGER NOT NULL,
            targetStructId   INTEGER NOT NULL REFERENCES Struct(id),
            targetServiceId  INTEGER NOT NULL REFERENCES Service(id),
            referenceTypeId  INTEGER NOT NULL REFERENCES ReferenceType(id),
            line             INTEGER NOT NULL
        )
    """),
    ("CallChainEdge", """
        CREATE TABLE CallChainEdge (
            id                     INTEGER PRIMARY KEY,
            testStepId             INTEGER NOT NULL REFERENCES TestStep(id),
            parentEdgeId           INTEGER REFERENCES CallChainEdge(id),
            sourceConfigFunctionId INTEGER REFERENCES ConfigFunction(id),
            targetConfigFunctionId INTEGER NOT NULL REFERENCES ConfigFunction(id),
            sourceServiceId        INTEGER NOT NULL REFERENCES Service(id),
            targetServiceId        INTEGER NOT NULL REFERENCES Service(id),
            depth                  INTEGER NOT NULL,
            crossesBoundary        INTEGER NOT NULL,
            referenceTypeId        INTEGER NOT NULL REFERENCES ReferenceType(id),
            localityTypeId         INTEGER NOT NULL REFERENCES ReferenceType(id)
        )
    """),
    ("ChainResourceClosure", """
        CREATE TABLE ChainResourceClosure (
            chainEdgeId INTEGER NOT NULL REFERENCES CallChainEdge(id),
            resourceId  INTEGER NOT NULL REFERENCES Resource(id),
            PRIMARY KEY (chainEdgeId, resourceId)
        )
    """),
    ("DirectResourceReference", """
        CREATE TABLE DirectResourceReference (
            id               INTEGER PRIMARY KEY,
            configFunctionId INTEGER NOT NULL REFERENCES ConfigFunction(id),
            resourceId       INTEGER NOT NULL REFERENCES Resource(id),
            referenceTypeId  INTEGER NOT NULL REFERENCES ReferenceType(id),
            context          TEXT NOT NULL,
            line             INTEGER NOT NULL
        )
    """),
    ("SequentialReference", """
        CREATE TABLE SequentialReference (
            id                   INTEGER PRIMARY KEY,
            entryPointFunctionId INTEGER NOT NULL REFERENCES TestFunction(id),
            referencedFunctionId INTEGER NOT NULL REFERENCES TestFunction(id),
            "group"              TEXT NOT NULL,
            "key"                TEXT NOT NULL,
            referenceTypeId      INTEGER NOT NULL REFERENCES ReferenceType(id),
            line                 INTEGER NOT NULL
        )
    """),
]

TABLES: List[str] = [name for name, _ in SCHEMA]

_INDEXES = [
    "CREATE INDEX idx_step_test ON TestStep(testFunctionId)",
    "CREATE INDEX idx_edge_step ON CallChainEdge(testStepId)",
    "CREATE INDEX idx_edge_target ON CallChainEdge(targetConfigFunctionId)",
    "CREATE INDEX idx_closure_resource ON ChainResourceClosure(resourceId)",
    "CREATE INDEX idx_direct_resource ON DirectResourceReference(resourceId)",
    "CREATE INDEX idx_direct_function ON DirectResourceReference(configFunctionId)",
    "CREATE INDEX idx_seq_referenced ON SequentialReference(referencedFunctionId)",
]


def _quote(column: str) -> str:
    return f'"{column}"'


# ===================================================================
# GraphStore
# ===================================================================

class GraphStore:
    """Normalized dependency store.

    Lookup tables (Resource, Service, Struct, File, ResourceRegistration)
    are filled through get-or-create accessors that return stable ids.
    Relationship tables are append-only. After :meth:`freeze` every write
    raises :class:`StoreFrozenError`.
    """

    def __init__(self, seed: bool = True) -> None:
        self.conn = sqlite3.connect(":memory:")
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._frozen = False
        self._lookup_cache: Dict[str, Dict[str, int]] = {
            "Resource": {}, "Service": {}, "Struct": {}, "File": {}, "ResourceRegistration": {},
        }
        self._init_schema()
        if seed:
            self._seed_reference_types()

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        for _, ddl in SCHEMA:
            cur.execute(ddl)
        for ddl in _INDEXES:
            cur.execute(ddl)
        self.conn.commit()

    def _seed_reference_types(self) -> None:
        self.conn.executemany(
            "INSERT INTO ReferenceType (id, name, category) VALUES (?, ?, ?)",
            [(rt.id, rt.name, rt.category) for rt in ReferenceType],
        )
        self.conn.commit()

    def columns(self, table: str) -> List[Tuple[str, str]]:
        """``(name, declared type)`` pairs for *table* in schema order."""
        rows = self.conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
        return [(row["name"], row["type"].upper()) for row in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self.conn.commit()
        self._frozen = True

    def _check_writable(self) -> None:
        if self._frozen:
            raise StoreFrozenError("store is frozen; build a new store to add rows")

    # ------------------------------------------------------------------
    # Lookup tables (get-or-create)
    # ------------------------------------------------------------------

    def _get_or_create(self, table: str, column: str, value: str, extra: Optional[Dict[str, Any]] = None) -> int:
        cache = self._lookup_cache[table]
        if value in cache:
            return cache[value]
        row = self.conn.execute(
            f"SELECT id FROM {table} WHERE {_quote(column)} = ?", (value,),
        ).fetchone()
        if row is not None:
            cache[value] = row["id"]
            return row["id"]
        values = {column: value}
        values.update(extra or {})
        row_id = self.insert(table, **values)
        cache[value] = row_id
        return row_id

    def resource_id(self, name: str) -> int:
        return self._get_or_create("Resource", "name", name)

    def service_id(self, name: str) -> int:
        return self._get_or_create("Service", "name", name)

    def struct_id(self, name: str) -> int:
        return self._get_or_create("Struct", "name", name)

    def file_id(self, path: str, service_id: int) -> int:
        return self._get_or_create("File", "path", path, {"serviceId": service_id})

    def registration_id(self, name: str, owning_service_id: Optional[int]) -> int:
        return self._get_or_create("ResourceRegistration", "name", name, {"owningServiceId": owning_service_id})

    # ------------------------------------------------------------------
    # Relationship tables (append-only)
    # ------------------------------------------------------------------

    def insert(self, table: str, **values: Any) -> int:
        """Append one row and return its surrogate id."""
        self._check_writable()
        columns = ", ".join(_quote(c) for c in values)
        placeholders = ", ".join("?" for _ in values)
        try:
            cur = self.conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolation(f"{table}: {exc}") from exc
        return cur.lastrowid

    def add_test_function(
        self, name: str, line: int, file_id: Optional[int], struct_id: Optional[int],
    ) -> int:
        visibility = ReferenceType.PUBLIC_REFERENCE if name[:1].isupper() else ReferenceType.PRIVATE_REFERENCE
        return self.insert(
            "TestFunction", fileId=file_id, structId=struct_id, name=name,
            line=line, visibilityTypeId=visibility.id,
        )

    def add_config_function(
        self, name: str, line: int, file_id: int, struct_id: int,
        receiver_kind: str, returns_text: bool,
    ) -> int:
        return self.insert(
            "ConfigFunction", fileId=file_id, structId=struct_id, name=name,
            receiverKind=receiver_kind, returnsText=int(returns_text), line=line,
        )

    def add_test_step(
        self, test_function_id: int, config_function_id: int, step_index: int,
        target_struct_id: int, target_service_id: int, reference_type: ReferenceType, line: int,
    ) -> int:
        return self.insert(
            "TestStep", testFunctionId=test_function_id, configFunctionId=config_function_id,
            stepIndex=step_index, targetStructId=target_struct_id, targetServiceId=target_service_id,
            referenceTypeId=reference_type.id, line=line,
        )

    def add_chain_edge(
        self, test_step_id: int, parent_edge_id: Optional[int],
        source_function_id: Optional[int], target_function_id: int,
        source_service_id: int, target_service_id: int, depth: int, same_file: bool = True,
    ) -> int:
        crosses = source_service_id != target_service_id
        reference_type = ReferenceType.CROSS_SERVICE if crosses else ReferenceType.SAME_SERVICE
        locality = ReferenceType.EMBEDDED_REFERENCE if same_file else ReferenceType.CROSS_FILE_REFERENCE
        return self.insert(
            "CallChainEdge", testStepId=test_step_id, parentEdgeId=parent_edge_id,
            sourceConfigFunctionId=source_function_id, targetConfigFunctionId=target_function_id,
            sourceServiceId=source_service_id, targetServiceId=target_service_id,
            depth=depth, crossesBoundary=int(crosses), referenceTypeId=reference_type.id,
            localityTypeId=locality.id,
        )

    def add_closure(self, chain_edge_id: int, resource_ids: Iterable[int]) -> None:
        self._check_writable()
        try:
            self.conn.executemany(
                "INSERT INTO ChainResourceClosure (chainEdgeId, resourceId) VALUES (?, ?)",
                [(chain_edge_id, rid) for rid in sorted(set(resource_ids))],
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolation(f"ChainResourceClosure: {exc}") from exc

    def add_direct_reference(
        self, config_function_id: int, resource_id: int,
        reference_type: ReferenceType, context: str, line: int,
    ) -> int:
        return self.insert(
            "DirectResourceReference", configFunctionId=config_function_id, resourceId=resource_id,
            referenceTypeId=reference_type.id, context=context, line=line,
        )

    def add_sequential_reference(
        self, entry_point_id: int, referenced_id: int, group: str, key: str,
        reference_type: ReferenceType, line: int,
    ) -> int:
        return self.insert(
            "SequentialReference", entryPointFunctionId=entry_point_id,
            referencedFunctionId=referenced_id, group=group, key=key,
            referenceTypeId=reference_type.id, line=line,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        return self.conn.execute(sql, tuple(params)).fetchall()

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self.conn.execute(sql, tuple(params)).fetchone()

    def counts(self) -> Dict[str, int]:
        return {
            table: self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in TABLES
        }

    def dangling_references(self) -> List[sqlite3.Row]:
        """Rows whose foreign keys point nowhere (always empty for a valid store)."""
        return self.conn.execute("PRAGMA foreign_key_check").fetchall()

    # ------------------------------------------------------------------
    # CSV serialization
    # ------------------------------------------------------------------

    def export_tables(self, directory: Path) -> List[Path]:
        """Write one ``<Table>.csv`` per table, headers included even when empty."""
        directory.mkdir(parents=True, exist_ok=True)
        written = []
        for table in TABLES:
            names = [name for name, _ in self.columns(table)]
            order = "id" if "id" in names else ", ".join(_quote(n) for n in names)
            rows = self.conn.execute(
                f"SELECT {', '.join(_quote(n) for n in names)} FROM {table} ORDER BY {order}"
            ).fetchall()
            path = directory / f"{table}.csv"
            with open(path, "w", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(names)
                for row in rows:
                    writer.writerow(["" if value is None else value for value in row])
            written.append(path)
        logger.info("Exported %d tables to %s", len(written), directory)
        return written

    @classmethod
    def load_tables(cls, directory: Path) -> "GraphStore":
        """Rebuild a frozen store from CSV files written by :meth:`export_tables`."""
        if not directory.is_dir():
            raise StoreLoadError(f"store directory not found: {directory}")

        store = cls(seed=False)
        for table in TABLES:
            path = directory / f"{table}.csv"
            if not path.exists():
                store.close()
                raise StoreLoadError(f"missing table file: {path.name}")
            try:
                store._load_table(table, path)
            except StoreLoadError:
                store.close()
                raise

        store._reload_lookup_cache()
        store.freeze()
        return store

    def _load_table(self, table: str, path: Path) -> None:
        columns = self.columns(table)
        names = [name for name, _ in columns]
        with open(path, "r", encoding="utf-8", newline="") as f:
            reader = csv.reader(f)
            header = next(reader, None)
            if header != names:
                raise StoreLoadError(f"{path.name}: unexpected header {header!r}, expected {names!r}")
            rows = []
            for lineno, record in enumerate(reader, start=2):
                if len(record) != len(names):
                    raise StoreLoadError(f"{path.name}:{lineno}: expected {len(names)} fields, got {len(record)}")
                try:
                    rows.append(tuple(_decode(value, sql_type) for value, (_, sql_type) in zip(record, columns)))
                except ValueError as exc:
                    raise StoreLoadError(f"{path.name}:{lineno}: {exc}") from exc

        placeholders = ", ".join("?" for _ in names)
        try:
            self.conn.executemany(
                f"INSERT INTO {table} ({', '.join(_quote(n) for n in names)}) VALUES ({placeholders})",
                rows,
            )
        except sqlite3.IntegrityError as exc:
            raise StoreLoadError(f"{path.name}: {exc}") from exc

    def _reload_lookup_cache(self) -> None:
        for table, column in (("Resource", "name"), ("Service", "name"), ("Struct", "name"),
                              ("File", "path"), ("ResourceRegistration", "name")):
            self._lookup_cache[table] = {
                row[column]: row["id"]
                for row in self.conn.execute(f"SELECT id, {column} FROM {table}")
            }


def _decode(value: str, sql_type: str) -> Any:
    if sql_type == "INTEGER":
        return None if value == "" else int(value)
    return value
