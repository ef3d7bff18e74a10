"""Architecture advisor: code-smell detectors and a health score over a Graph."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from .config import ENHANCEMENT_TIMEOUT
from .dependency_graph import DependencyGraphAssembler
from .graph_engine import CONTAINS, GraphAnalyzer
from .knowledge import KnowledgeSource
from .llm import AdvisoryTextService, build_refactoring_prompt
from .models import (
    ArchitectureAnalysisOptions,
    ArchitectureAnalysisResult,
    ArchitectureStatistics,
    ArchitectureSuggestion,
    DependencyGraphFilters,
    DependencyGraphOptions,
    EstimatedImpact,
    Graph,
    GraphEdge,
)
from .parser import SourceParser

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {"critical": 10, "error": 5, "warning": 2, "info": 0.5}

ENTRY_POINT_PATTERNS = ("index", "main", "app", "server", "cli")

GOD_CLASS_LINES = 500
GOD_CLASS_COMPLEXITY = 50
GOD_CLASS_DEPENDENTS = 10
EFFERENT_WARNING = 15
EFFERENT_ERROR = 25
FRAGILE_DEPENDENTS = 10
FEATURE_ENVY_CALLS = 3
MISSING_ABSTRACTION_SIZE = 3
MAX_ENHANCED = 5


def severity_weight(severity: str) -> float:
    return SEVERITY_WEIGHTS.get(severity, 1)


class _EdgeIndex:
    """Incoming/outgoing dependency edges per node; ``contains`` is left out."""

    def __init__(self, graph: Graph):
        self.outgoing: Dict[str, List[GraphEdge]] = defaultdict(list)
        self.incoming: Dict[str, List[GraphEdge]] = defaultdict(list)
        for edge in graph.edges:
            if edge.type == CONTAINS:
                continue
            self.outgoing[edge.source].append(edge)
            self.incoming[edge.target].append(edge)


class ArchitectureAdvisor:
    """Runs smell detectors and scores overall architecture health.

    The optional advisory service only rewrites ``suggested_refactoring``
    text; detection results never depend on it.
    """

    def __init__(
        self,
        parser: SourceParser,
        knowledge: KnowledgeSource,
        repo_path: Path,
        advisory: Optional[AdvisoryTextService] = None,
        enhancement_timeout: float = ENHANCEMENT_TIMEOUT,
    ):
        self.assembler = DependencyGraphAssembler(parser, knowledge, repo_path)
        self.advisory = advisory
        self.enhancement_timeout = enhancement_timeout

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def analyze(self, options: ArchitectureAnalysisOptions) -> ArchitectureAnalysisResult:
        graph = await self.assembler.build_graph(DependencyGraphOptions(
            root_file=options.target_path or ".",
            depth=10,
            include_external=False,
            layout="force",
            filters=DependencyGraphFilters(
                node_types=["file", "function", "class"],
                edge_types=["imports", "calls", "extends", "implements"],
            ),
        ))
        return await self.analyze_graph(graph, options)

    async def analyze_graph(self, graph: Graph, options: ArchitectureAnalysisOptions) -> ArchitectureAnalysisResult:
        started = time.perf_counter()
        logger.info("Starting architecture analysis of %d nodes", len(graph.nodes))

        analyzer = GraphAnalyzer(graph)
        edges = _EdgeIndex(graph)
        issue_types = options.issue_types

        suggestions: List[ArchitectureSuggestion] = []
        if "circular-dependency" in issue_types:
            suggestions.extend(self.detect_circular_dependencies(analyzer))
        if "god-class" in issue_types:
            suggestions.extend(self.detect_god_classes(graph, edges))
        if "tight-coupling" in issue_types:
            suggestions.extend(self.detect_tight_coupling(graph, edges))
        if "dead-code" in issue_types:
            suggestions.extend(self.detect_dead_code(graph, edges))
        if "feature-envy" in issue_types:
            suggestions.extend(self.detect_feature_envy(graph, edges))
        if "missing-abstraction" in issue_types:
            suggestions.extend(self.detect_missing_abstractions(analyzer))

        kept = [s for s in suggestions if s.confidence >= options.min_confidence]

        if options.include_refactoring_suggestions and self.advisory is not None:
            await self.enhance_suggestions(kept)

        health = self.calculate_health_score(kept, len(graph.nodes))
        kept.sort(key=lambda s: severity_weight(s.severity), reverse=True)

        logger.info(
            "Architecture analysis complete: %d suggestions, health %d, %.2fs",
            len(kept), health, time.perf_counter() - started,
        )
        return ArchitectureAnalysisResult(
            suggestions=kept,
            health_score=health,
            statistics=self.calculate_statistics(kept),
            summary=self.generate_summary(kept, health),
        )

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    @staticmethod
    def detect_circular_dependencies(analyzer: GraphAnalyzer) -> List[ArchitectureSuggestion]:
        suggestions = []
        for cycle in analyzer.find_circular_dependencies():
            if len(cycle) < 2:
                continue
            preview = " → ".join(cycle[:3]) + (" → ..." if len(cycle) > 3 else "")
            suggestions.append(ArchitectureSuggestion(
                id=f"circular-{'-'.join(cycle)[:50]}",
                type="circular-dependency",
                severity="error" if len(cycle) > 3 else "warning",
                entities=list(cycle),
                description=f"Circular dependency detected involving {len(cycle)} files: {preview}",
                suggested_refactoring=(
                    "Break the cycle by:\n"
                    "1. Extracting shared dependencies to a common module\n"
                    "2. Using dependency injection\n"
                    "3. Inverting one of the dependencies using interfaces"
                ),
                estimated_impact=EstimatedImpact(
                    files_affected=len(cycle),
                    test_coverage=0.7,
                    risk_level="high" if len(cycle) > 4 else "medium",
                ),
                confidence=0.95,
                references=["https://en.wikipedia.org/wiki/Circular_dependency"],
            ))
        return suggestions

    @staticmethod
    def detect_god_classes(graph: Graph, edges: _EdgeIndex) -> List[ArchitectureSuggestion]:
        suggestions = []
        for node in graph.nodes:
            if node.type != "class":
                continue
            complexity = node.metrics.complexity or 0
            lines = node.metrics.lines_of_code or 0
            is_large = lines > GOD_CLASS_LINES
            is_complex = complexity > GOD_CLASS_COMPLEXITY
            popular = len(edges.incoming[node.id]) > GOD_CLASS_DEPENDENTS
            if not (is_large or is_complex or popular):
                continue

            reasons = []
            if is_large:
                reasons.append(f"large size ({lines} lines)")
            if is_complex:
                reasons.append(f"high complexity ({complexity:g})")
            if popular:
                reasons.append("many dependents")

            suggestions.append(ArchitectureSuggestion(
                id=f"god-class-{node.id}",
                type="god-class",
                severity="error" if is_large and is_complex else "warning",
                entities=[node.id],
                description=f"`{node.name}` shows signs of being a god class: {', '.join(reasons)}",
                suggested_refactoring=(
                    "Consider splitting into smaller, focused classes:\n"
                    "1. Identify distinct responsibilities\n"
                    "2. Extract related methods into new classes\n"
                    "3. Use composition over inheritance\n"
                    "4. Apply Single Responsibility Principle"
                ),
                estimated_impact=EstimatedImpact(
                    files_affected=-(-lines // 100),
                    test_coverage=0.6,
                    risk_level="high" if is_large and is_complex else "medium",
                ),
                confidence=0.8,
            ))
        return suggestions

    @staticmethod
    def detect_tight_coupling(graph: Graph, edges: _EdgeIndex) -> List[ArchitectureSuggestion]:
        suggestions = []
        for node in graph.nodes:
            if node.type != "file":
                continue
            outgoing = edges.outgoing[node.id]
            efferent = len(outgoing)
            afferent = len(edges.incoming[node.id])

            if efferent > EFFERENT_WARNING:
                suggestions.append(ArchitectureSuggestion(
                    id=f"tight-coupling-efferent-{node.id}",
                    type="tight-coupling",
                    severity="error" if efferent > EFFERENT_ERROR else "warning",
                    entities=[node.id] + [e.target for e in outgoing[:5]],
                    description=f"`{node.name}` has high efferent coupling ({efferent} dependencies)",
                    suggested_refactoring=(
                        "Reduce dependencies by:\n"
                        "1. Using dependency injection\n"
                        "2. Creating facades for related dependencies\n"
                        "3. Breaking into smaller, focused modules\n"
                        "4. Using interfaces instead of concrete implementations"
                    ),
                    estimated_impact=EstimatedImpact(files_affected=efferent, test_coverage=0.5, risk_level="medium"),
                    confidence=0.85,
                ))

            instability = efferent / ((afferent + efferent) or 1)
            if afferent > FRAGILE_DEPENDENTS and instability > 0.5:
                suggestions.append(ArchitectureSuggestion(
                    id=f"tight-coupling-fragile-{node.id}",
                    type="tight-coupling",
                    severity="warning",
                    entities=[node.id],
                    description=(
                        f"`{node.name}` is a fragile dependency "
                        f"({afferent} dependents, instability: {instability:.2f})"
                    ),
                    suggested_refactoring=(
                        "Stabilize this component by:\n"
                        "1. Reducing its own dependencies\n"
                        "2. Using abstract interfaces\n"
                        "3. Moving volatile parts to dependent modules"
                    ),
                    estimated_impact=EstimatedImpact(files_affected=afferent, test_coverage=0.7, risk_level="medium"),
                    confidence=0.75,
                ))
        return suggestions

    @staticmethod
    def detect_dead_code(graph: Graph, edges: _EdgeIndex) -> List[ArchitectureSuggestion]:
        suggestions = []
        for node in graph.nodes:
            if node.type not in ("function", "class"):
                continue
            lowered = node.name.lower()
            if any(pattern in lowered for pattern in ENTRY_POINT_PATTERNS):
                continue
            if "index" in node.path or node.name.startswith("export"):
                continue
            if edges.incoming[node.id]:
                continue
            suggestions.append(ArchitectureSuggestion(
                id=f"dead-code-{node.id}",
                type="dead-code",
                severity="info",
                entities=[node.id],
                description=f"`{node.name}` in `{node.path}` appears to be unused",
                suggested_refactoring=(
                    "If this code is truly unused:\n"
                    "1. Remove the code\n"
                    "2. If keeping for future use, add a TODO comment\n"
                    '3. Consider moving to a separate "deprecated" module'
                ),
                estimated_impact=EstimatedImpact(files_affected=1, test_coverage=0.9, risk_level="low"),
                # dynamic references are invisible to static edges
                confidence=0.6,
            ))
        return suggestions

    @staticmethod
    def detect_feature_envy(graph: Graph, edges: _EdgeIndex) -> List[ArchitectureSuggestion]:
        suggestions = []
        nodes = graph.node_map()
        for node in graph.nodes:
            if node.type not in ("method", "function"):
                continue
            calls_by_file: Counter = Counter()
            for edge in edges.outgoing[node.id]:
                target = nodes.get(edge.target)
                if edge.type == "calls" and target is not None and target.path != node.path:
                    calls_by_file[target.path] += 1

            for external_path, count in calls_by_file.items():
                if count < FEATURE_ENVY_CALLS:
                    continue
                suggestions.append(ArchitectureSuggestion(
                    id=f"feature-envy-{node.id}-{external_path}",
                    type="feature-envy",
                    severity="info",
                    entities=[node.id, external_path],
                    description=f"`{node.name}` makes {count} calls to `{external_path}`, suggesting feature envy",
                    suggested_refactoring=(
                        "Consider:\n"
                        f"1. Moving this method to {external_path}\n"
                        f"2. Extracting the related logic into {external_path}\n"
                        "3. Creating a new class that encapsulates both"
                    ),
                    estimated_impact=EstimatedImpact(files_affected=2, test_coverage=0.8, risk_level="low"),
                    confidence=0.7,
                ))
        return suggestions

    @staticmethod
    def detect_missing_abstractions(analyzer: GraphAnalyzer) -> List[ArchitectureSuggestion]:
        suggestions = []
        for component in analyzer.find_strongly_connected_components():
            if len(component) < MISSING_ABSTRACTION_SIZE:
                continue
            suggestions.append(ArchitectureSuggestion(
                id=f"missing-abstraction-{'-'.join(component[:3])}",
                type="missing-abstraction",
                severity="info",
                entities=list(component),
                description=f"{len(component)} tightly coupled components might benefit from a shared abstraction",
                suggested_refactoring=(
                    "Consider:\n"
                    "1. Extracting common interfaces\n"
                    "2. Creating a base class or mixin\n"
                    "3. Using a shared utility module"
                ),
                estimated_impact=EstimatedImpact(
                    files_affected=len(component), test_coverage=0.6, risk_level="medium",
                ),
                confidence=0.65,
            ))
        return suggestions

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    async def enhance_suggestions(self, suggestions: List[ArchitectureSuggestion]) -> int:
        """Rewrite refactoring text of the top high-severity suggestions.

        Returns how many were rewritten. Timeouts and service errors are
        logged per suggestion.
        """
        candidates = [s for s in suggestions if s.severity in ("error", "critical")]
        candidates.sort(key=lambda s: severity_weight(s.severity), reverse=True)

        rewritten = 0
        for suggestion in candidates[:MAX_ENHANCED]:
            prompt = build_refactoring_prompt(suggestion.type, suggestion.description, suggestion.entities)
            try:
                text = await asyncio.wait_for(self.advisory.suggest(prompt), timeout=self.enhancement_timeout)
            except asyncio.TimeoutError:
                logger.warning("Refactoring enhancement timed out for %s", suggestion.id)
                continue
            except Exception as exc:
                logger.warning("Refactoring enhancement failed for %s: %s", suggestion.id, exc)
                continue
            if text:
                suggestion.suggested_refactoring = text
                rewritten += 1
        return rewritten

    # ------------------------------------------------------------------
    # Scoring and reporting
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_health_score(suggestions: List[ArchitectureSuggestion], node_count: int) -> int:
        if node_count == 0:
            return 100
        penalty = sum(severity_weight(s.severity) * len(s.entities) for s in suggestions)
        score = max(0.0, 100 - penalty / (node_count * 10) * 100)
        # half-up rounding
        return int(score + 0.5)

    @staticmethod
    def generate_summary(suggestions: List[ArchitectureSuggestion], health: int) -> str:
        if not suggestions:
            return "No significant architecture issues detected. The codebase appears well-structured."

        if health >= 80:
            parts = [f"Overall architecture health is good ({health}/100)."]
        elif health >= 60:
            parts = [f"Architecture health is moderate ({health}/100) with some areas for improvement."]
        else:
            parts = [f"Architecture health needs attention ({health}/100) with several issues to address."]

        by_type = Counter(s.type for s in suggestions)
        issues = [f"{count} {kind.replace('-', ' ')} issue(s)" for kind, count in by_type.items()]
        parts.append(f"Found: {', '.join(issues)}.")

        urgent = sum(1 for s in suggestions if s.severity in ("critical", "error"))
        if urgent:
            parts.append(f"Priority: Address {urgent} high-severity issue(s) first.")
        return " ".join(parts)

    @staticmethod
    def calculate_statistics(suggestions: List[ArchitectureSuggestion]) -> ArchitectureStatistics:
        counts = Counter(s.severity for s in suggestions)
        return ArchitectureStatistics(
            total_issues=len(suggestions),
            critical_count=counts["critical"] + counts["error"],
            warning_count=counts["warning"],
            info_count=counts["info"],
        )
