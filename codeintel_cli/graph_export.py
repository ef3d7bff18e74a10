"""Graph export helpers for JSON, DOT and standalone HTML outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from .models import Graph, GraphEdge, GraphNode

_NODE_COLORS = {
    "file": "#4e79a7",
    "module": "#4e79a7",
    "class": "#f28e2b",
    "interface": "#edc948",
    "function": "#59a14f",
    "method": "#76b7b2",
    "variable": "#bab0ac",
}


def focused_subgraph(graph: Graph, focus: str = "") -> Graph:
    """Restrict *graph* to nodes matching *focus* plus their direct neighbours.

    An empty focus, or one matching nothing, returns the graph unchanged.
    """
    if not focus:
        return graph

    focus_ids = {n.id for n in graph.nodes if focus in n.id or focus in n.name or focus in n.path}
    if not focus_ids:
        return graph

    edges = [e for e in graph.edges if e.source in focus_ids or e.target in focus_ids]
    keep = set(focus_ids)
    for edge in edges:
        keep.add(edge.source)
        keep.add(edge.target)
    return Graph(nodes=[n for n in graph.nodes if n.id in keep], edges=edges, metadata=graph.metadata)


def graph_to_json(graph: Graph, focus: str = "") -> Dict[str, Any]:
    return focused_subgraph(graph, focus).to_dict()


def export_json(graph: Graph, output_file: Path, focus: str = "") -> None:
    output_file.write_text(json.dumps(graph_to_json(graph, focus), indent=2), encoding="utf-8")


def export_dot(graph: Graph, output_file: Path, focus: str = "") -> None:
    selected = focused_subgraph(graph, focus)
    known = {n.id for n in selected.nodes}

    lines = ["digraph CodeIntel {", "  rankdir=LR;"]
    for node in selected.nodes:
        label = f"{node.type}\\n{node.name}"
        lines.append(f'  "{_esc(node.id)}" [label="{_esc(label)}"];')
    for edge in selected.edges:
        if edge.source not in known or edge.target not in known:
            continue
        style = ' style="dashed"' if edge.type == "contains" else ""
        lines.append(f'  "{_esc(edge.source)}" -> "{_esc(edge.target)}" [label="{_esc(edge.type)}"{style}];')
    lines.append("}")
    output_file.write_text("\n".join(lines), encoding="utf-8")


def export_html(graph: Graph, output_file: Path, focus: str = "") -> None:
    """Interactive vis-network page; layout positions are kept when present."""
    selected = focused_subgraph(graph, focus)
    payload = {
        "nodes": [_vis_node(n) for n in selected.nodes],
        "edges": [_vis_edge(e) for e in selected.edges],
    }
    output_file.write_text(_html_page(payload, len(selected.nodes), len(selected.edges)), encoding="utf-8")


def _vis_node(node: GraphNode) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "id": node.id,
        "label": node.name,
        "title": f"{node.type}: {node.path}",
        "color": _NODE_COLORS.get(node.type, "#9c755f"),
        "shape": "box" if node.type in ("file", "module") else "dot",
    }
    if node.position is not None:
        item["x"] = node.position.x
        item["y"] = node.position.y
    return item


def _vis_edge(edge: GraphEdge) -> Dict[str, Any]:
    return {
        "from": edge.source,
        "to": edge.target,
        "label": edge.type,
        "arrows": "to",
        "dashes": edge.type == "contains",
        "value": edge.weight,
    }


def _html_page(payload: Dict[str, List[Dict[str, Any]]], node_count: int, edge_count: int) -> str:
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>CodeIntel Dependency Graph</title>
  <script src="https://unpkg.com/vis-network/standalone/umd/vis-network.min.js"></script>
  <style>
    body {{ font-family: ui-monospace, SFMono-Regular, Menlo, monospace; margin: 0; }}
    header {{ padding: 10px 16px; border-bottom: 1px solid #ddd; }}
    #graph {{ width: 100vw; height: calc(100vh - 48px); }}
  </style>
</head>
<body>
  <header>CodeIntel dependency graph: {node_count} nodes, {edge_count} edges</header>
  <div id="graph"></div>
  <script>
    const data = {json.dumps(payload)};
    const hasPositions = data.nodes.length > 0 && data.nodes.every(n => n.x !== undefined);
    new vis.Network(
      document.getElementById('graph'),
      {{ nodes: new vis.DataSet(data.nodes), edges: new vis.DataSet(data.edges) }},
      {{ physics: {{ enabled: !hasPositions }}, edges: {{ font: {{ size: 9 }} }} }}
    );
  </script>
</body>
</html>
"""


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
