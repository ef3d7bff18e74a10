"""Dependency graph assembly.

Pipeline, in order: discover files, parse them, synthesize file and symbol
nodes, resolve relative imports into edges, enrich from the knowledge
source, score, filter, lay out. Failures on one file or one query are logged
and skipped; only an unresolvable root aborts the build.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import time
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .errors import ConstructionError, EnrichmentError
from .fs_scan import discover_files, resolve_root
from .graph_engine import GraphAnalyzer, GraphBuilder
from .knowledge import KnowledgeSource
from .layout import LayoutOptions, apply_layout
from .models import (
    DependencyGraphFilters,
    DependencyGraphOptions,
    Graph,
    GraphMetadata,
    ParsedFile,
    SearchResult,
    create_edge,
    create_node,
    make_node_id,
)
from .parser import SourceParser

logger = logging.getLogger(__name__)

# Tried in order when resolving an import specifier to a parsed file
IMPORT_SUFFIXES = ("", ".ts", ".tsx", ".js", ".jsx", ".py", "/index.ts", "/index.js", "/__init__.py")

RELATIONSHIP_EDGE_TYPES = {
    "CALLS": "calls",
    "CALLED_BY": "calls",
    "IMPORTS": "imports",
    "IMPORTED_BY": "imports",
    "EXTENDS": "extends",
    "IMPLEMENTS": "implements",
    "CONTAINS": "contains",
    "REFERENCES": "references",
}

_SYMBOL_TYPES = {"class", "function", "method", "interface", "variable"}


def create_default_filters() -> DependencyGraphFilters:
    return DependencyGraphFilters(
        node_types=["file", "function", "class"],
        edge_types=["imports", "calls", "extends"],
        vulnerability_filter="all",
    )


def create_default_options(root_file: str) -> DependencyGraphOptions:
    return DependencyGraphOptions(
        root_file=root_file,
        depth=5,
        include_external=False,
        layout="force",
        filters=create_default_filters(),
    )


def map_relationship_type(relationship: str) -> str:
    return RELATIONSHIP_EDGE_TYPES.get(relationship.upper(), "references")


def map_entity_type(entity_type: str) -> str:
    return entity_type if entity_type in _SYMBOL_TYPES else "function"


class DependencyGraphAssembler:
    """Builds a :class:`Graph` for a repository or a subtree of it.

    One instance per concurrent build: the parsed-file cache and node maps
    are private state reset at the start of every :meth:`build_graph`.
    """

    def __init__(self, parser: SourceParser, knowledge: KnowledgeSource, repo_path: Path):
        self.parser = parser
        self.knowledge = knowledge
        self.repo_path = Path(repo_path).resolve()
        self._reset()

    def _reset(self) -> None:
        self._builder = GraphBuilder()
        self._parsed: Dict[str, ParsedFile] = {}
        self._file_ids: Dict[str, str] = {}
        self._symbol_ids: Dict[Tuple[str, str], str] = {}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def build_graph(self, options: DependencyGraphOptions) -> Graph:
        started = time.perf_counter()
        logger.info("Building dependency graph for %s (depth %d)", options.root_file, options.depth)
        self._reset()
        filters = options.filters

        root = resolve_root(self.repo_path, options.root_file)
        if root is None:
            cause = FileNotFoundError(f"root path not found: {options.root_file}")
            raise ConstructionError(f"Failed to build dependency graph: {cause}") from cause

        files = await asyncio.to_thread(
            discover_files, root, self.repo_path, filters.exclude_patterns, filters.include_patterns,
        )
        logger.debug("Discovered %d files", len(files))

        await self._parse_files(files)
        logger.debug("Parsed %d of %d files", len(self._parsed), len(files))

        self._build_file_nodes(filters)
        if any(t not in ("file", "module") for t in filters.node_types):
            self._build_symbol_nodes(filters)
        self._build_import_edges(options)
        enriched = await self._enrich(options)

        graph = self._builder.build()
        self._score_nodes(graph)
        graph = self._apply_filters(graph, filters)

        root_id = self._file_ids.get(self._relative(root)) if root.is_file() else None
        graph = apply_layout(graph, options.layout, root_id, LayoutOptions(width=1600, height=1200))

        graph.metadata.root_file = options.root_file
        graph.metadata.files_discovered = len(files)
        graph.metadata.files_parsed = len(self._parsed)
        graph.metadata.files_skipped = len(files) - len(self._parsed)
        graph.metadata.enrichment_applied = enriched

        logger.info(
            "Dependency graph built: %d nodes, %d edges in %.2fs",
            len(graph.nodes), len(graph.edges), time.perf_counter() - started,
        )
        return graph

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.repo_path).as_posix()
        except ValueError:
            return path.as_posix()

    async def _parse_files(self, files: List[Path]) -> None:
        for path in files:
            try:
                parsed = await self.parser.parse(str(path))
            except Exception as exc:
                logger.warning("Failed to parse %s: %s", path, exc)
                continue
            if parsed is not None:
                self._parsed[self._relative(path)] = parsed

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    @staticmethod
    def _file_complexity(parsed: ParsedFile) -> float:
        complexity = 0.0
        for entity in parsed.entities:
            if entity.type in ("function", "method"):
                complexity += 1
            elif entity.type == "class":
                complexity += 2
        complexity += len(parsed.imports) * 0.5
        return round(complexity, 1)

    def _build_file_nodes(self, filters: DependencyGraphFilters) -> None:
        if "file" not in filters.node_types and "module" not in filters.node_types:
            return

        for rel_path, parsed in self._parsed.items():
            node_id = make_node_id("file", rel_path)
            self._file_ids[rel_path] = node_id
            self._builder.add_node(create_node(
                id=node_id,
                type="file",
                name=posixpath.basename(rel_path),
                path=rel_path,
                language=parsed.language,
                metrics={
                    "complexity": self._file_complexity(parsed),
                    "lines_of_code": sum(e.end_line - e.start_line + 1 for e in parsed.entities),
                },
            ))

    def _build_symbol_nodes(self, filters: DependencyGraphFilters) -> None:
        link_contains = "contains" in filters.edge_types
        for rel_path, parsed in self._parsed.items():
            file_id = self._file_ids.get(rel_path)
            for entity in parsed.entities:
                node_type = map_entity_type(entity.type)
                if node_type not in filters.node_types:
                    continue

                qualname = entity.id.split(":", 1)[-1] or entity.name
                node_id = make_node_id(node_type, f"{rel_path}:{qualname}")
                self._builder.add_node(create_node(
                    id=node_id,
                    type=node_type,
                    name=entity.name,
                    path=rel_path,
                    start_line=entity.start_line,
                    end_line=entity.end_line,
                    language=parsed.language,
                    parent_id=file_id,
                    metrics={
                        "complexity": entity.end_line - entity.start_line,
                        "lines_of_code": entity.end_line - entity.start_line + 1,
                    },
                ))
                self._symbol_ids.setdefault((rel_path, entity.name), node_id)
                self._symbol_ids[(rel_path, qualname)] = node_id

                if file_id and link_contains:
                    self._builder.add_edge(create_edge(file_id, node_id, "contains"))

    # ------------------------------------------------------------------
    # Import edges
    # ------------------------------------------------------------------

    def _match_suffixes(self, base: str) -> Optional[str]:
        for suffix in IMPORT_SUFFIXES:
            candidate = base + suffix
            if candidate in self._parsed:
                return candidate
        return None

    def resolve_import_path(self, from_file: str, source: str, include_external: bool = False) -> Optional[str]:
        """Map an import specifier to a parsed file's repo-relative path."""
        if source.startswith("./") or source.startswith("../"):
            joined = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), source))
            return self._match_suffixes(joined)

        if not include_external or not source or source.startswith("."):
            return None

        # bare specifier: only resolvable when the target is part of this repo
        language = self._parsed[from_file].language if from_file in self._parsed else ""
        base = source.replace(".", "/") if language == "python" else source
        return self._match_suffixes(base.strip("/"))

    def _build_import_edges(self, options: DependencyGraphOptions) -> None:
        if "imports" in options.filters.edge_types:
            for rel_path, parsed in self._parsed.items():
                source_id = self._file_ids.get(rel_path)
                if not source_id:
                    continue
                for imp in parsed.imports:
                    target_path = self.resolve_import_path(rel_path, imp.source, options.include_external)
                    target_id = self._file_ids.get(target_path) if target_path else None
                    if target_id and target_id != source_id:
                        self._builder.add_edge(create_edge(source_id, target_id, "imports", line_number=imp.line))

        if any(t in options.filters.edge_types for t in ("calls", "extends", "implements")):
            logger.debug("Call and inheritance edges are taken from knowledge enrichment")

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def _lookup_file(self, value: object) -> Optional[str]:
        if not isinstance(value, str) or not value:
            return None
        if value in self._file_ids:
            return value
        path = Path(value)
        if path.is_absolute():
            rel = self._relative(path)
            if rel in self._file_ids:
                return rel
        return None

    def _endpoint(self, file_value: object, symbol_value: object) -> Optional[str]:
        rel = self._lookup_file(file_value)
        if rel is None:
            return None
        if isinstance(symbol_value, str) and symbol_value:
            symbol_id = self._symbol_ids.get((rel, symbol_value))
            if symbol_id and self._builder.has_node(symbol_id):
                return symbol_id
        return self._file_ids[rel]

    async def _query_relationships(self, options: DependencyGraphOptions) -> List[SearchResult]:
        query = f"relationships between files and functions in {options.root_file}"
        try:
            return await self.knowledge.search(query, limit=100, domain="code")
        except EnrichmentError:
            raise
        except Exception as exc:
            raise EnrichmentError(str(exc)) from exc

    async def _enrich(self, options: DependencyGraphOptions) -> bool:
        try:
            results = await self._query_relationships(options)
        except EnrichmentError as exc:
            logger.warning("Failed to enrich dependency graph: %s", exc)
            return False

        added = 0
        for result in results:
            metadata = result.metadata or {}
            relationship = metadata.get("relationship_type")
            if isinstance(relationship, str) and relationship:
                source_id = self._endpoint(metadata.get("source_file"), metadata.get("source_symbol"))
                target_id = self._endpoint(metadata.get("target_file"), metadata.get("target_symbol"))
                edge_type = map_relationship_type(relationship)
                if source_id and target_id and edge_type in options.filters.edge_types:
                    self._builder.add_edge(create_edge(source_id, target_id, edge_type, weight=result.score))
                    added += 1

            frequency = metadata.get("change_frequency")
            rel = self._lookup_file(metadata.get("file_path"))
            if rel and isinstance(frequency, (int, float)) and frequency:
                node = self._builder.get_node(self._file_ids[rel])
                if node is not None:
                    node.metrics.change_frequency = frequency

        logger.debug("Enrichment returned %d results, %d edges added", len(results), added)
        return True

    # ------------------------------------------------------------------
    # Scoring and filtering
    # ------------------------------------------------------------------

    @staticmethod
    def _score_nodes(graph: Graph) -> None:
        """Set ``impact_score`` to importance scaled so the top node is 100."""
        scores = GraphAnalyzer(graph).calculate_importance_scores()
        highest = max(scores.values(), default=0.0)
        if highest <= 0:
            return
        for node in graph.nodes:
            node.metrics.impact_score = round(scores.get(node.id, 0.0) / highest * 100, 2)

    @staticmethod
    def _apply_filters(graph: Graph, filters: DependencyGraphFilters) -> Graph:
        nodes = [n for n in graph.nodes if n.type in filters.node_types]

        if filters.impact_threshold is not None:
            nodes = [n for n in nodes if n.metrics.impact_score >= filters.impact_threshold]

        if filters.vulnerability_filter == "affected":
            nodes = [n for n in nodes if n.vulnerabilities]
        elif filters.vulnerability_filter == "clean":
            nodes = [n for n in nodes if not n.vulnerabilities]

        kept: Set[str] = {n.id for n in nodes}
        edges = [
            e for e in graph.edges
            if e.source in kept and e.target in kept and e.type in filters.edge_types
        ]
        for node in nodes:
            node.children = [c for c in node.children if c in kept]

        return Graph(
            nodes=nodes,
            edges=edges,
            metadata=GraphMetadata(
                total_nodes=len(nodes),
                total_edges=len(edges),
                max_depth=graph.metadata.max_depth,
                generated_at=graph.metadata.generated_at,
            ),
        )
