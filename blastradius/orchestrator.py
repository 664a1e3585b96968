"""Build orchestrator coordinating extraction, resolution and queries."""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import config
from .models import BuildSummary, FileAnalysis, TestInvocation
from .parser import ExtractOptions, analyze_file, relative_path, service_for_path
from .query import BlastRadiusQuery
from .resolver import DependencyResolver
from .sequential import SequentialLinker
from .storage import GraphStore
from .symbols import SymbolIndex

logger = logging.getLogger(__name__)


class AnalysisOrchestrator:
    """Run a full build: Stage A in parallel, then Stage B on one thread.

    Stage A extracts every file independently. Stage B starts only after all
    results are in (the barrier) and owns the store exclusively.
    """

    def __init__(self, options: Optional[ExtractOptions] = None, workers: Optional[int] = None) -> None:
        self.options = options or ExtractOptions()
        self.workers = config.WORKERS if workers is None else workers

    # ------------------------------------------------------------------
    # Stage A
    # ------------------------------------------------------------------

    def extract(self, paths: Sequence[Path], repo_root: Optional[Path] = None) -> List[FileAnalysis]:
        """Extract all files; results are sorted by path once every task finishes."""
        file_paths = [str(p) for p in dict.fromkeys(paths)]
        root = str(repo_root) if repo_root else None
        if self.workers > 1 and len(file_paths) > 1:
            results = self._parallel_extract(file_paths, root)
        else:
            results = [analyze_file(path, root, self.options) for path in file_paths]
        results.sort(key=lambda a: a.path)
        return results

    def _parallel_extract(self, file_paths: List[str], repo_root: Optional[str]) -> List[FileAnalysis]:
        """Extract files in parallel using a process pool."""
        results = []
        with ProcessPoolExecutor(max_workers=self.workers) as executor:
            futures = {
                executor.submit(analyze_file, path, repo_root, self.options): path
                for path in file_paths
            }
            for future in as_completed(futures):
                try:
                    results.append(future.result())
                except Exception as exc:  # worker crashed; keep the run going
                    path = futures[future]
                    rel = relative_path(Path(path), Path(repo_root) if repo_root else None)
                    logger.warning("Extraction failed for %s: %s", rel, exc)
                    results.append(FileAnalysis(path=rel, service=service_for_path(rel), error=str(exc)))
        return results

    # ------------------------------------------------------------------
    # Full build
    # ------------------------------------------------------------------

    def build(
        self,
        paths: Sequence[Path],
        resources: Iterable[str],
        repo_root: Optional[Path] = None,
    ) -> Tuple[GraphStore, BuildSummary]:
        """Build a frozen store for *paths* and derive the test invocations."""
        targets = list(dict.fromkeys(resources))
        analyses = self.extract(paths, repo_root)

        summary = BuildSummary(files_total=len(analyses))
        for analysis in analyses:
            if analysis.ok:
                summary.files_parsed += 1
            else:
                summary.files_skipped += 1
                summary.errors[analysis.path] = analysis.error or ""
        logger.info(
            "Extracted %d files (%d parsed, %d skipped)",
            summary.files_total, summary.files_parsed, summary.files_skipped,
        )

        # Barrier: everything below sees the complete corpus.
        index = SymbolIndex.build(analyses)
        store = GraphStore()
        resolver = DependencyResolver(index, store, targets)
        summary.resolution = resolver.run()
        summary.steps_skipped = resolver.steps_skipped
        summary.unresolved_calls = list(resolver.calls.unresolved)
        linker = SequentialLinker(index, store, resolver.test_ids, resolver.file_ids)
        summary.stubs_created = linker.run()
        store.freeze()

        summary.counts = store.counts()
        summary.invocations = derive_invocations(BlastRadiusQuery(store), targets)
        return store, summary


def derive_invocations(query: BlastRadiusQuery, resources: Iterable[str]) -> List[TestInvocation]:
    """Reduce indirect results to runnable tests grouped by service and package.

    Private tests only run through the sequential entry points that already
    appear in the result; stubs have no package to run in.
    """
    grouped: Dict[Tuple[str, str, str], List[str]] = {}
    for resource in resources:
        for affected in query.affected_tests(resource):
            result = affected.result
            if affected.is_stub:
                logger.debug("Dropping stub %s from invocations", result.function)
                continue
            if not affected.public:
                logger.debug("Private test %s runs via its sequential entry point", result.function)
                continue
            package_dir = str(PurePosixPath(result.file_path).parent)
            tests = grouped.setdefault((result.service, resource, package_dir), [])
            if result.function not in tests:
                tests.append(result.function)

    return [
        TestInvocation(service=service, resource=resource, package_dir=package_dir, tests=sorted(tests))
        for (service, resource, package_dir), tests in sorted(grouped.items())
    ]
