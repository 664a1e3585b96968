"""Link grouped sequential test runners to the tests they invoke."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set, Tuple

from .models import ReferenceType
from .storage import GraphStore
from .symbols import SymbolIndex, SymbolKey

logger = logging.getLogger(__name__)


class SequentialLinker:
    """Create ``SequentialReference`` rows, stubbing out-of-scope targets.

    A target identifier is looked up by name, preferring a test declared in
    the entry point's own package directory. A miss creates one stub test
    function (line 0, no file, no struct) per ``(directory, identifier)``.
    """

    def __init__(
        self,
        index: SymbolIndex,
        store: GraphStore,
        test_ids: Dict[SymbolKey, int],
        file_ids: Dict[str, int],
    ) -> None:
        self.index = index
        self.store = store
        self.test_ids = test_ids
        self.file_ids = file_ids
        self.stubs: Dict[Tuple[str, str], int] = {}
        self.extra_entries: Dict[Tuple[str, str], int] = {}
        self.references = 0

    def run(self) -> int:
        """Link every sequential entry; returns the number of stubs created."""
        seen: Set[Tuple[int, int, str, str]] = set()
        for path, analysis in sorted(self.index.files.items()):
            directory = analysis.directory
            for entry in analysis.sequential_entries:
                entry_id = self._entry_point_id(path, entry.entry_function)
                if entry_id is None:
                    continue

                target = self.index.test_by_name(entry.target, directory)
                if target is not None and target.key in self.test_ids:
                    target_id = self.test_ids[target.key]
                    reference_type = ReferenceType.SEQUENTIAL_REFERENCE
                else:
                    target_id = self._stub(directory, entry.target)
                    reference_type = ReferenceType.EXTERNAL_STUB_REFERENCE

                fact = (entry_id, target_id, entry.group, entry.key)
                if fact in seen:
                    continue
                seen.add(fact)
                self.store.add_sequential_reference(
                    entry_point_id=entry_id,
                    referenced_id=target_id,
                    group=entry.group,
                    key=entry.key,
                    reference_type=reference_type,
                    line=entry.line,
                )
                self.references += 1

        logger.info("Linked %d sequential references (%d stubs)", self.references, len(self.stubs))
        return len(self.stubs)

    def _entry_point_id(self, path: str, name: str) -> Optional[int]:
        symbol = self.index.test_at(path, name)
        if symbol is not None and symbol.key in self.test_ids:
            return self.test_ids[symbol.key]
        if (path, name) in self.extra_entries:
            return self.extra_entries[(path, name)]

        # Lost to a same-keyed test elsewhere; register it so its links survive.
        decl = next((d for d in self.index.files[path].test_functions if d.name == name), None)
        if decl is None:
            logger.warning("Sequential entry point %s not found in %s", name, path)
            return None
        entry_id = self.store.add_test_function(
            name=name, line=decl.line, file_id=self.file_ids[path], struct_id=None,
        )
        self.extra_entries[(path, name)] = entry_id
        return entry_id

    def _stub(self, directory: str, name: str) -> int:
        key = (directory, name)
        if key not in self.stubs:
            self.stubs[key] = self.store.add_test_function(name=name, line=0, file_id=None, struct_id=None)
            logger.debug("Created stub test function %s for %s", name, directory or ".")
        return self.stubs[key]
