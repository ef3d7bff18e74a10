"""Change-impact analysis: who breaks if a symbol changes.

Works from raw source text and knowledge-source relationships; no prebuilt
graph is needed. Usages are found with line-level regexes, so false
negatives (dynamic dispatch, aliasing) are expected.
"""

from __future__ import annotations

import asyncio
import logging
import math
import posixpath
import re
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import EnrichmentError, NotFoundError
from .fs_scan import iter_source_files
from .knowledge import KnowledgeSource
from .models import (
    IMPACT_LEVELS,
    RIPPLE_SEVERITIES,
    ImpactAnalysisResult,
    ImpactItem,
    ImpactRipple,
    Position,
    RippleLayer,
    RippleNode,
    Usage,
)
from .parser import SourceParser

logger = logging.getLogger(__name__)

MAX_IMPACT_DEPTH = 3

_TEST_MARKERS = (".test.", ".spec.", "__tests__", "/tests/")
_CONFIG_MARKERS = ("config", ".config.", "webpack", "vite")
_CORE_MARKERS = ("core", "main.", "index.", "app.", "server.")
_SERVICE_MARKERS = ("api", "service", "controller")

_IMPORT_RE = re.compile(r"\bimport\s+|\bfrom\s+")
_INHERIT_RE = re.compile(r"\bextends\s+|\bimplements\s+")


@dataclass
class _Dependency:
    caller: str
    caller_file: str
    relationship: str


@dataclass
class _ImpactNode:
    symbol: str
    file_path: str
    depth: int
    usages: List[Usage] = field(default_factory=list)


# ===================================================================
# Scoring helpers
# ===================================================================

def _is_test_file(file_path: str) -> bool:
    normalized = "/" + file_path.replace("\\", "/")
    name = normalized.rsplit("/", 1)[-1]
    return any(marker in normalized for marker in _TEST_MARKERS) or name.startswith("test_")


def file_criticality(file_path: str) -> float:
    """Weight of a file by its role, judged from path substrings."""
    if _is_test_file(file_path):
        return 0.3
    if any(marker in file_path for marker in _CONFIG_MARKERS):
        return 0.5
    if any(marker in file_path for marker in _CORE_MARKERS):
        return 2.0
    if any(marker in file_path for marker in _SERVICE_MARKERS):
        return 1.5
    return 1.0


def is_core_module(file_path: str) -> bool:
    return any(marker in file_path for marker in _CORE_MARKERS)


def impact_score(depth: int, usage_count: int, file_path: str) -> float:
    base = 100 / (2 ** (depth - 1))
    usage_multiplier = min(usage_count, 10) / 10
    return base * usage_multiplier * file_criticality(file_path)


def impact_level(score: float, depth: int, file_path: str) -> str:
    if score >= 80 and depth == 1 and is_core_module(file_path):
        return "CRITICAL"
    if score >= 50 and depth == 1:
        return "HIGH"
    if score >= 20 or depth == 2:
        return "MEDIUM"
    return "LOW"


def impact_reason(node: _ImpactNode, level: str, root_symbol: str) -> str:
    count = len(node.usages)
    kinds = "/".join(dict.fromkeys(u.usage_type for u in node.usages))
    if level == "CRITICAL":
        return (
            f"Core module with {count} direct {kinds} reference(s) to `{root_symbol}`. "
            "Changes will require immediate attention."
        )
    if level == "HIGH":
        return (
            f"Direct caller with {count} {kinds} reference(s) to `{root_symbol}`. "
            "Changes will likely break this code."
        )
    if level == "MEDIUM":
        return (
            f"Indirectly depends on `{root_symbol}` at depth {node.depth} with {count} reference(s). "
            "Review may be needed."
        )
    return f"Minimal impact at depth {node.depth}. {count} reference(s) found but unlikely to cause issues."


# ===================================================================
# Usage detection
# ===================================================================

def _strip_comment(line: str) -> str:
    return line.split("//", 1)[0].split("#", 1)[0]


def _usage_patterns(symbol: str) -> List[re.Pattern]:
    s = re.escape(symbol)
    return [
        re.compile(rf"\b{s}\s*\("),
        re.compile(rf"\b{s}\s*\."),
        re.compile(rf"\bclass\s+\w+\s+extends\s+{s}"),
        re.compile(rf"\bimport\s+.*{s}"),
        re.compile(rf"\bfrom\s+.*{s}"),
        re.compile(rf"\b{s}\b"),
    ]


def classify_usage(line: str, symbol: str) -> str:
    if _IMPORT_RE.search(line):
        return "import"
    if _INHERIT_RE.search(line) or re.search(rf"\bclass\s+\w+\s*\([^)]*\b{re.escape(symbol)}\b", line):
        return "inheritance"
    if re.search(rf"{re.escape(symbol)}\s*\(", line):
        return "call"
    return "reference"


def scan_file_for_usages(path: Path, rel_path: str, symbol: str) -> List[Usage]:
    """Usages of *symbol* in one file; raises ``OSError``/``UnicodeDecodeError``."""
    lines = path.read_text(encoding="utf-8").split("\n")
    patterns = _usage_patterns(symbol)
    usages: List[Usage] = []
    for index, line in enumerate(lines):
        code = _strip_comment(line)
        if not any(p.search(code) for p in patterns):
            continue
        usages.append(Usage(
            file_path=rel_path,
            line=index + 1,
            context="\n".join(lines[max(0, index - 1): index + 2]),
            usage_type=classify_usage(code, symbol),
        ))
    return usages


# ===================================================================
# ImpactAnalyzer
# ===================================================================

class ImpactAnalyzer:
    """Computes the blast radius of changing one symbol."""

    def __init__(self, parser: SourceParser, knowledge: KnowledgeSource, repo_path: Path):
        self.parser = parser
        self.knowledge = knowledge
        self.repo_path = Path(repo_path).resolve()
        self._usage_cache: Dict[str, List[Usage]] = {}

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.repo_path).as_posix()
        except ValueError:
            return path.as_posix()

    def _normalize_target(self, file_path: str) -> str:
        path = Path(file_path)
        if path.is_absolute():
            return self._relative(path)
        return posixpath.normpath(file_path.replace("\\", "/"))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def analyze_impact(self, symbol: str, file_path: Optional[str] = None) -> ImpactAnalysisResult:
        logger.info("Starting impact analysis for %s", symbol)
        self._usage_cache = {}

        target_file = file_path or await self._find_symbol_definition(symbol)
        if target_file:
            target_file = self._normalize_target(target_file)
        if not target_file:
            raise NotFoundError(f"Symbol '{symbol}' not found in codebase")

        direct = [u for u in await self._cached_usages(symbol) if u.file_path != target_file]
        logger.debug("Found %d direct usages of %s", len(direct), symbol)

        dependencies = await self._query_dependencies(symbol, target_file)
        logger.debug("Knowledge source reported %d dependents", len(dependencies))

        nodes = await self._build_impact_graph(symbol, target_file, direct, dependencies)
        impacts = self._rank_impacts(nodes, symbol)

        return ImpactAnalysisResult(
            target_symbol=symbol,
            target_file=target_file,
            total_impact=round(sum(item.impact_score for item in impacts), 2),
            impacts=impacts,
            graph_depth=max((item.depth for item in impacts), default=0),
            analysis_timestamp=datetime.now(),
        )

    async def find_usages(self, symbol: str, scope: Optional[str] = None) -> List[Usage]:
        """Every line in the repository (or under *scope*) that references *symbol*."""
        return await asyncio.to_thread(self._scan, symbol, scope)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scan(self, symbol: str, scope: Optional[str]) -> List[Usage]:
        usages: List[Usage] = []
        files = iter_source_files(self.repo_path, scope)
        for path in files:
            try:
                usages.extend(scan_file_for_usages(path, self._relative(path), symbol))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to search %s: %s", path, exc)
        logger.debug("Found %d usages of %s across %d files", len(usages), symbol, len(files))
        return usages

    async def _cached_usages(self, symbol: str) -> List[Usage]:
        if symbol not in self._usage_cache:
            self._usage_cache[symbol] = await self.find_usages(symbol)
        return self._usage_cache[symbol]

    async def _find_symbol_definition(self, symbol: str) -> Optional[str]:
        try:
            results = await self.knowledge.search(f"definition of {symbol}", limit=5, domain="code")
        except EnrichmentError as exc:
            logger.warning("Definition lookup for %s failed: %s", symbol, exc)
            results = []

        if results:
            candidate = results[0].metadata.get("file_path")
            if isinstance(candidate, str) and candidate:
                return candidate

        for path in await asyncio.to_thread(iter_source_files, self.repo_path):
            try:
                parsed = await self.parser.parse(str(path))
            except Exception as exc:
                logger.warning("Failed to parse %s: %s", path, exc)
                continue
            if parsed and any(entity.name == symbol for entity in parsed.entities):
                return self._relative(path)
        return None

    async def _query_dependencies(self, symbol: str, file_path: str) -> List[_Dependency]:
        queries = (
            (f"What functions or classes call {symbol} from {file_path}?", "CALLED_BY", "caller", "caller_file"),
            (f"What files import {symbol} from {file_path}?", "IMPORTED_BY", "importer", "importer_file"),
        )
        dependencies: List[_Dependency] = []
        for query, relationship, name_key, file_key in queries:
            try:
                results = await self.knowledge.search(query, limit=20, domain="code")
            except EnrichmentError as exc:
                logger.warning("Dependency query for %s failed: %s", symbol, exc)
                return []
            for result in results:
                caller = result.metadata.get(name_key)
                caller_file = result.metadata.get(file_key)
                if isinstance(caller, str) and caller and isinstance(caller_file, str) and caller_file:
                    dependencies.append(_Dependency(caller, caller_file, relationship))
        return dependencies

    async def _build_impact_graph(
        self,
        root_symbol: str,
        root_file: str,
        direct: List[Usage],
        dependencies: List[_Dependency],
    ) -> Dict[str, _ImpactNode]:
        nodes: Dict[str, _ImpactNode] = {}
        queue: deque = deque()

        for usage in direct:
            key = f"{usage.file_path}:{usage.usage_type}"
            if key not in nodes:
                nodes[key] = _ImpactNode(root_symbol, usage.file_path, depth=1)
                queue.append((root_symbol, usage.file_path, 1))
            nodes[key].usages.append(usage)

        for dep in dependencies:
            key = f"{dep.caller_file}:{dep.relationship}"
            if key in nodes:
                continue
            nodes[key] = _ImpactNode(dep.caller, dep.caller_file, depth=1, usages=[Usage(
                file_path=dep.caller_file,
                line=0,
                context=f"{dep.relationship} relationship from knowledge source",
                usage_type="call" if dep.relationship == "CALLED_BY" else "import",
            )])
            queue.append((dep.caller, dep.caller_file, 1))

        visited: set = set()
        while queue:
            symbol, current_file, depth = queue.popleft()
            visit_key: Tuple[str, int] = (current_file, depth)
            if visit_key in visited or depth >= MAX_IMPACT_DEPTH:
                continue
            visited.add(visit_key)

            for usage in await self._cached_usages(symbol):
                if usage.file_path in (root_file, current_file):
                    continue
                key = f"{usage.file_path}:depth{depth + 1}"
                if key not in nodes:
                    nodes[key] = _ImpactNode(symbol, usage.file_path, depth + 1, [usage])
                    queue.append((symbol, usage.file_path, depth + 1))
                else:
                    nodes[key].usages.append(usage)

        logger.debug("Impact graph holds %d entries", len(nodes))
        return nodes

    @staticmethod
    def _rank_impacts(nodes: Dict[str, _ImpactNode], root_symbol: str) -> List[ImpactItem]:
        impacts: List[ImpactItem] = []
        for node in nodes.values():
            score = impact_score(node.depth, len(node.usages), node.file_path)
            level = impact_level(score, node.depth, node.file_path)
            impacts.append(ImpactItem(
                symbol=node.symbol,
                file_path=node.file_path,
                impact_level=level,
                impact_score=round(score, 2),
                usages=node.usages,
                depth=node.depth,
                reason=impact_reason(node, level, root_symbol),
            ))
        # stable sort: equal scores keep discovery order
        impacts = sorted(impacts, key=lambda item: item.impact_score, reverse=True)
        logger.info("Ranked %d impacts for %s", len(impacts), root_symbol)
        return impacts


# ===================================================================
# Impact ripple
# ===================================================================

RIPPLE_CENTER = 400.0
RIPPLE_BASE_RADIUS = 100.0
RIPPLE_RADIUS_STEP = 80.0

_USAGE_EDGE_TYPES = {
    "call": "calls",
    "import": "imports",
    "inheritance": "extends",
    "reference": "references",
}


def parse_entity_id(entity_id: str) -> Tuple[str, Optional[str]]:
    """Split ``file:path:Symbol``, ``path:Symbol`` or ``Symbol`` into (symbol, file)."""
    parts = entity_id.split(":")
    if len(parts) >= 3:
        return parts[-1], ":".join(parts[1:-1])
    if len(parts) == 2:
        if "." in parts[0] or "/" in parts[0]:
            return parts[1], parts[0]
        return parts[1], None
    return entity_id, None


def _ripple_node(item: ImpactItem) -> RippleNode:
    severity = item.impact_level.lower() if item.impact_level in IMPACT_LEVELS else "none"
    usage_types = list(dict.fromkeys(
        _USAGE_EDGE_TYPES[u.usage_type] for u in item.usages if u.usage_type in _USAGE_EDGE_TYPES
    ))
    return RippleNode(
        id=f"ripple-{item.depth}-{item.file_path}-{item.symbol}",
        name=item.symbol,
        file_path=item.file_path,
        depth=item.depth,
        severity=severity,
        impact_score=item.impact_score,
        usage_count=len(item.usages),
        usage_types=usage_types,
    )


def _layer_severity(nodes: List[RippleNode]) -> str:
    present = {node.severity for node in nodes}
    return next((s for s in RIPPLE_SEVERITIES if s in present), "none")


def _place_ring(layer: RippleLayer) -> None:
    radius = RIPPLE_BASE_RADIUS + (layer.depth - 1) * RIPPLE_RADIUS_STEP
    count = len(layer.nodes)
    for index, node in enumerate(layer.nodes):
        angle = 2 * math.pi * index / count - math.pi / 2
        node.angle = angle
        node.radius = radius
        node.position = Position(
            x=RIPPLE_CENTER + radius * math.cos(angle),
            y=RIPPLE_CENTER + radius * math.sin(angle),
        )


def build_ripple(
    result: ImpactAnalysisResult,
    max_depth: int = 3,
    include_tests: bool = False,
    minimum_impact_score: float = 10,
) -> ImpactRipple:
    """Group impacts into depth rings with per-ring worst severity and totals.

    Test files, items scoring below *minimum_impact_score* and items deeper
    than *max_depth* are dropped. Nodes get polar positions around a fixed
    center, one ring per depth.
    """
    groups: Dict[int, List[RippleNode]] = {}
    for item in result.impacts:
        if not include_tests and _is_test_file(item.file_path):
            continue
        if item.impact_score < minimum_impact_score or item.depth > max_depth:
            continue
        groups.setdefault(item.depth, []).append(_ripple_node(item))

    layers: List[RippleLayer] = []
    for depth in sorted(groups):
        nodes = groups[depth]
        layer = RippleLayer(
            depth=depth,
            severity=_layer_severity(nodes),
            nodes=nodes,
            total_impact=round(sum(node.impact_score for node in nodes), 2),
        )
        _place_ring(layer)
        layers.append(layer)

    counts = Counter(node.severity for layer in layers for node in layer.nodes)
    ripple = ImpactRipple(
        symbol=result.target_symbol,
        file_path=result.target_file,
        layers=layers,
        total_affected=sum(counts.values()),
        critical_count=counts["critical"],
        high_count=counts["high"],
        medium_count=counts["medium"],
        low_count=counts["low"],
    )

    logger.info(
        "Impact ripple for %s: %d layers, %d affected",
        result.target_symbol, len(layers), ripple.total_affected,
    )
    return ripple
