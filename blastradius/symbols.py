"""Corpus-wide symbol index built once every file has been extracted."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .models import FileAnalysis, FunctionDecl, LocalBinding

logger = logging.getLogger(__name__)

SymbolKey = Tuple[str, str]  # (struct, name)


@dataclass(frozen=True)
class Symbol:
    """A declared function together with the file it lives in."""

    path: str
    service: str
    decl: FunctionDecl
    struct: str

    @property
    def directory(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    @property
    def key(self) -> SymbolKey:
        return (self.struct, self.decl.name)


class SymbolIndex:
    """Merge per-file records into lookups keyed by ``(struct, name)``.

    Records are processed sorted by path so that "first seen wins" is
    deterministic. Duplicates are logged and otherwise ignored.
    """

    def __init__(self) -> None:
        self.files: Dict[str, FileAnalysis] = {}
        self.configs: Dict[SymbolKey, Symbol] = {}
        self.tests: Dict[SymbolKey, Symbol] = {}
        self.tests_by_name: Dict[str, List[Symbol]] = {}
        self.duplicates = 0
        self._constructors: Dict[Tuple[str, str], str] = {}
        self._constructors_by_name: Dict[str, str] = {}
        self._bindings: Dict[Tuple[str, str, str], Dict[str, List[LocalBinding]]] = {}

    @classmethod
    def build(cls, analyses: Iterable[FileAnalysis]) -> "SymbolIndex":
        index = cls()
        for analysis in sorted(analyses, key=lambda a: a.path):
            if analysis.ok:
                index.add(analysis)
        logger.info(
            "Symbol index: %d files, %d config functions, %d test functions",
            len(index.files), len(index.configs), len(index.tests),
        )
        return index

    def add(self, analysis: FileAnalysis) -> None:
        self.files[analysis.path] = analysis
        directory = analysis.directory

        for name, struct in analysis.constructors.items():
            self._constructors.setdefault((directory, name), struct)
            self._constructors_by_name.setdefault(name, struct)

        for binding in analysis.bindings:
            scope = self._bindings.setdefault((analysis.path, binding.function, binding.function_struct), {})
            scope.setdefault(binding.name, []).append(binding)

        for decl in analysis.config_functions:
            symbol = Symbol(analysis.path, analysis.service, decl, decl.struct)
            self._register(self.configs, symbol, "config function")

        for decl in analysis.test_functions:
            symbol = Symbol(analysis.path, analysis.service, decl, self._test_struct(analysis, decl))
            if self._register(self.tests, symbol, "test function"):
                self.tests_by_name.setdefault(decl.name, []).append(symbol)

    def _register(self, table: Dict[SymbolKey, Symbol], symbol: Symbol, label: str) -> bool:
        existing = table.get(symbol.key)
        if existing is not None:
            self.duplicates += 1
            logger.warning(
                "Duplicate %s %s.%s in %s (keeping %s)",
                label, symbol.struct or "<none>", symbol.decl.name, symbol.path, existing.path,
            )
            return False
        table[symbol.key] = symbol
        return True

    def _test_struct(self, analysis: FileAnalysis, decl: FunctionDecl) -> str:
        """Receiver type, or the struct of the test's ``r := X{}`` binding."""
        if decl.struct:
            return decl.struct
        candidates = [
            b for b in analysis.bindings
            if b.function == decl.name and not b.function_struct and not b.method
        ]
        candidates.sort(key=lambda b: (b.name != "r", b.line))
        for binding in candidates:
            struct = binding.struct or self.constructor_type(binding.constructor, analysis.directory)
            if struct:
                return struct
        return ""

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def config(self, struct: str, name: str) -> Optional[Symbol]:
        if not struct or not name:
            return None
        return self.configs.get((struct, name))

    def test(self, struct: str, name: str) -> Optional[Symbol]:
        return self.tests.get((struct, name))

    def test_by_name(self, name: str, directory: str = "") -> Optional[Symbol]:
        """Find a test function by bare name, preferring the same package."""
        candidates = self.tests_by_name.get(name, [])
        for symbol in candidates:
            if symbol.directory == directory:
                return symbol
        return candidates[0] if candidates else None

    def test_at(self, path: str, name: str) -> Optional[Symbol]:
        for symbol in self.tests_by_name.get(name, []):
            if symbol.path == path:
                return symbol
        return None

    def constructor_type(self, name: str, directory: str = "") -> str:
        if not name:
            return ""
        return self._constructors.get((directory, name)) or self._constructors_by_name.get(name, "")

    def function_decl(self, path: str, name: str, struct: str) -> Optional[FunctionDecl]:
        analysis = self.files.get(path)
        if analysis is None:
            return None
        for decl in analysis.test_functions + analysis.config_functions:
            if decl.name == name and decl.struct == struct:
                return decl
        return None

    def binding_before(
        self, path: str, function: str, function_struct: str, name: str, line: int,
    ) -> Optional[LocalBinding]:
        """Nearest binding of *name* at or before *line* in one function."""
        scope = self._bindings.get((path, function, function_struct), {})
        best: Optional[LocalBinding] = None
        for binding in scope.get(name, []):
            if binding.line <= line and (best is None or binding.line >= best.line):
                best = binding
        return best
