"""Core data models shared by graph construction, impact and architecture analysis."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

NODE_TYPES = ("file", "function", "class", "method", "module", "variable", "interface")
EDGE_TYPES = ("imports", "calls", "extends", "implements", "contains", "references")
LAYOUT_TYPES = ("force", "hierarchical", "radial", "organic")
IMPACT_LEVELS = ("CRITICAL", "HIGH", "MEDIUM", "LOW")
SEVERITIES = ("critical", "error", "warning", "info")
RIPPLE_SEVERITIES = ("critical", "high", "medium", "low", "none")

_NODE_ID_RE = re.compile(r"[^a-zA-Z0-9:._-]")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_plain(value: Any) -> Any:
    if is_dataclass(value):
        return {_camel(f.name): _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {key: _to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-ready representation with camelCase keys."""
        return _to_plain(self)


# ===================================================================
# Graph primitives
# ===================================================================

@dataclass
class Position(_Serializable):
    x: float
    y: float


@dataclass
class VulnerabilityInfo(_Serializable):
    id: str
    severity: str
    title: str
    cwe: Optional[str] = None
    affected_versions: Optional[str] = None


@dataclass
class NodeMetrics(_Serializable):
    complexity: float = 0
    change_frequency: float = 0
    impact_score: float = 0
    test_coverage: Optional[float] = None
    lines_of_code: Optional[int] = None
    cyclomatic_complexity: Optional[int] = None


@dataclass
class GraphNode(_Serializable):
    id: str
    type: str
    name: str
    path: str
    metrics: NodeMetrics = field(default_factory=NodeMetrics)
    vulnerabilities: List[VulnerabilityInfo] = field(default_factory=list)
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    language: Optional[str] = None
    parent_id: Optional[str] = None
    children: List[str] = field(default_factory=list)
    position: Optional[Position] = None


@dataclass
class EdgeMetadata(_Serializable):
    line_number: Optional[int] = None
    is_circular: Optional[bool] = None
    count: int = 1


@dataclass
class GraphEdge(_Serializable):
    id: str
    source: str
    target: str
    type: str
    weight: float = 1.0
    metadata: EdgeMetadata = field(default_factory=EdgeMetadata)


@dataclass
class GraphMetadata(_Serializable):
    total_nodes: int = 0
    total_edges: int = 0
    max_depth: int = 0
    root_file: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.now)
    files_discovered: int = 0
    files_parsed: int = 0
    files_skipped: int = 0
    enrichment_applied: bool = False


@dataclass
class Graph(_Serializable):
    nodes: List[GraphNode]
    edges: List[GraphEdge]
    metadata: GraphMetadata = field(default_factory=GraphMetadata)

    def node_map(self) -> Dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}


def edge_key(source: str, edge_type: str, target: str) -> str:
    """Deterministic edge identity: one edge per (source, type, target)."""
    return f"{source}:{edge_type}:{target}"


def make_node_id(node_type: str, identifier: str) -> str:
    return _NODE_ID_RE.sub("_", f"{node_type}:{identifier}")


def create_node(
    id: str,
    type: str,
    name: str,
    path: str,
    metrics: Optional[Dict[str, Any]] = None,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
    language: Optional[str] = None,
    parent_id: Optional[str] = None,
) -> GraphNode:
    """Build a node with zeroed metrics for anything not supplied."""
    metrics = metrics or {}
    return GraphNode(
        id=id,
        type=type,
        name=name,
        path=path,
        metrics=NodeMetrics(
            complexity=metrics.get("complexity", 0),
            change_frequency=metrics.get("change_frequency", 0),
            impact_score=metrics.get("impact_score", 0),
            test_coverage=metrics.get("test_coverage"),
            lines_of_code=metrics.get("lines_of_code"),
            cyclomatic_complexity=metrics.get("cyclomatic_complexity"),
        ),
        start_line=start_line,
        end_line=end_line,
        language=language,
        parent_id=parent_id,
    )


def create_edge(
    source: str,
    target: str,
    type: str,
    weight: float = 1.0,
    line_number: Optional[int] = None,
    is_circular: Optional[bool] = None,
) -> GraphEdge:
    return GraphEdge(
        id=edge_key(source, type, target),
        source=source,
        target=target,
        type=type,
        weight=weight,
        metadata=EdgeMetadata(line_number=line_number, is_circular=is_circular, count=1),
    )


# ===================================================================
# Assembler options
# ===================================================================

@dataclass
class DependencyGraphFilters(_Serializable):
    node_types: List[str] = field(default_factory=lambda: ["file", "function", "class"])
    edge_types: List[str] = field(default_factory=lambda: ["imports", "calls", "extends"])
    impact_threshold: Optional[float] = None
    vulnerability_filter: str = "all"
    exclude_patterns: List[str] = field(default_factory=list)
    include_patterns: List[str] = field(default_factory=list)


@dataclass
class DependencyGraphOptions(_Serializable):
    root_file: str
    depth: int = 5
    include_external: bool = False
    layout: str = "force"
    filters: DependencyGraphFilters = field(default_factory=DependencyGraphFilters)


# ===================================================================
# External collaborator records
# ===================================================================

@dataclass
class ParsedEntity(_Serializable):
    id: str
    type: str
    name: str
    start_line: int
    end_line: int
    parent_id: Optional[str] = None


@dataclass
class ParsedImport(_Serializable):
    source: str
    specifiers: List[str] = field(default_factory=list)
    is_default: bool = False
    line: int = 0


@dataclass
class ParsedExport(_Serializable):
    name: str
    is_default: bool = False
    line: int = 0


@dataclass
class ParsedFile(_Serializable):
    path: str
    language: str
    entities: List[ParsedEntity] = field(default_factory=list)
    imports: List[ParsedImport] = field(default_factory=list)
    exports: List[ParsedExport] = field(default_factory=list)


@dataclass
class SearchResult(_Serializable):
    """One ranked hit from the knowledge source.

    ``metadata`` has no fixed schema; read it with ``.get`` only.
    """

    score: float
    content: str = ""
    metadata: Dict[str, Optional[Any]] = field(default_factory=dict)
    id: str = ""


# ===================================================================
# Impact analysis
# ===================================================================

@dataclass
class Usage(_Serializable):
    file_path: str
    line: int
    context: str
    usage_type: str


@dataclass
class ImpactItem(_Serializable):
    symbol: str
    file_path: str
    impact_level: str
    impact_score: float
    usages: List[Usage]
    depth: int
    reason: str


@dataclass
class ImpactAnalysisResult(_Serializable):
    target_symbol: str
    target_file: str
    total_impact: float
    impacts: List[ImpactItem]
    graph_depth: int
    analysis_timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class RippleNode(_Serializable):
    id: str
    name: str
    file_path: str
    depth: int
    severity: str
    impact_score: float
    usage_count: int
    usage_types: List[str]
    position: Optional[Position] = None
    angle: Optional[float] = None
    radius: Optional[float] = None


@dataclass
class RippleLayer(_Serializable):
    depth: int
    severity: str
    nodes: List[RippleNode]
    total_impact: float


@dataclass
class ImpactRipple(_Serializable):
    """Impact results grouped into concentric rings by depth."""

    symbol: str
    file_path: str
    layers: List[RippleLayer]
    total_affected: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0


# ===================================================================
# Architecture analysis
# ===================================================================

@dataclass
class EstimatedImpact(_Serializable):
    files_affected: int
    test_coverage: float
    risk_level: str


@dataclass
class ArchitectureSuggestion(_Serializable):
    id: str
    type: str
    severity: str
    entities: List[str]
    description: str
    suggested_refactoring: str
    estimated_impact: EstimatedImpact
    confidence: float
    references: List[str] = field(default_factory=list)


@dataclass
class ArchitectureStatistics(_Serializable):
    total_issues: int = 0
    critical_count: int = 0
    warning_count: int = 0
    info_count: int = 0


@dataclass
class ArchitectureAnalysisResult(_Serializable):
    suggestions: List[ArchitectureSuggestion]
    health_score: int
    statistics: ArchitectureStatistics
    summary: str


@dataclass
class ArchitectureAnalysisOptions(_Serializable):
    target_path: Optional[str] = None
    issue_types: List[str] = field(
        default_factory=lambda: ["circular-dependency", "god-class", "tight-coupling", "dead-code"]
    )
    min_confidence: float = 0.5
    include_refactoring_suggestions: bool = False
