"""2D layout algorithms for dependency graphs.

Positions are written onto ``GraphNode.position`` in place. Every algorithm is
deterministic: the force-based ones draw their initial placement from a RNG
seeded by the root and node ids, so the same graph, algorithm and root always
yield the same coordinates.
"""

from __future__ import annotations

import logging
import math
import random
import zlib
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import Graph, Position

logger = logging.getLogger(__name__)

# Upper bound on pairwise force evaluations for one layout run
_FORCE_BUDGET = 2_000_000


@dataclass
class LayoutOptions:
    width: float = 1200
    height: float = 800
    padding: float = 50
    node_spacing: float = 100
    layer_spacing: float = 150
    iterations: int = 300


def _seeded_rng(graph: Graph, root_id: Optional[str]) -> random.Random:
    material = "|".join([root_id or ""] + sorted(node.id for node in graph.nodes))
    return random.Random(zlib.crc32(material.encode("utf-8")))


def _effective_iterations(node_count: int, requested: int) -> int:
    if node_count < 2:
        return requested
    return max(10, min(requested, _FORCE_BUDGET // (node_count * node_count)))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ===================================================================
# Force-directed
# ===================================================================

def force_directed_layout(graph: Graph, opts: LayoutOptions, root_id: Optional[str] = None) -> Graph:
    nodes = graph.nodes
    if not nodes:
        return graph

    rng = _seeded_rng(graph, root_id)
    cx, cy = opts.width / 2, opts.height / 2
    pos = {
        n.id: [cx + (rng.random() - 0.5) * opts.width * 0.5, cy + (rng.random() - 0.5) * opts.height * 0.5]
        for n in nodes
    }
    vel = {n.id: [0.0, 0.0] for n in nodes}
    ids = [n.id for n in nodes]

    iterations = _effective_iterations(len(ids), opts.iterations)
    repulsion, attraction, damping = 5000.0, 0.1, 0.9

    for step in range(iterations):
        alpha = 1 - step / iterations

        for i in range(len(ids)):
            a = pos[ids[i]]
            for j in range(i + 1, len(ids)):
                b = pos[ids[j]]
                dx, dy = b[0] - a[0], b[1] - a[1]
                dist = math.hypot(dx, dy) or 1.0
                force = repulsion * alpha / (dist * dist)
                fx, fy = dx / dist * force, dy / dist * force
                vel[ids[i]][0] -= fx
                vel[ids[i]][1] -= fy
                vel[ids[j]][0] += fx
                vel[ids[j]][1] += fy

        for edge in graph.edges:
            if edge.source not in pos or edge.target not in pos:
                continue
            s, t = pos[edge.source], pos[edge.target]
            dx, dy = t[0] - s[0], t[1] - s[1]
            dist = math.hypot(dx, dy) or 1.0
            ideal = opts.node_spacing * (1 + 1 / (edge.weight or 1))
            force = attraction * (dist - ideal) * alpha
            fx, fy = dx / dist * force, dy / dist * force
            vel[edge.source][0] += fx
            vel[edge.source][1] += fy
            vel[edge.target][0] -= fx
            vel[edge.target][1] -= fy

        for nid in ids:
            p, v = pos[nid], vel[nid]
            v[0] = (v[0] + (cx - p[0]) * 0.01 * alpha) * damping
            v[1] = (v[1] + (cy - p[1]) * 0.01 * alpha) * damping
            p[0] = _clamp(p[0] + v[0], opts.padding, opts.width - opts.padding)
            p[1] = _clamp(p[1] + v[1], opts.padding, opts.height - opts.padding)

    for node in nodes:
        x, y = pos[node.id]
        node.position = Position(x=round(x, 2), y=round(y, 2))
    return graph


# ===================================================================
# Hierarchical (layered, barycenter ordering)
# ===================================================================

def _assign_layers(graph: Graph) -> Dict[str, int]:
    ids = [n.id for n in graph.nodes]
    in_degree = {nid: 0 for nid in ids}
    adjacency: Dict[str, List[str]] = {nid: [] for nid in ids}
    for edge in graph.edges:
        if edge.source in adjacency and edge.target in in_degree:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    layers: Dict[str, int] = {}
    queue = deque()
    for nid in ids:
        if in_degree[nid] == 0:
            layers[nid] = 0
            queue.append(nid)

    while queue:
        current = queue.popleft()
        for neighbor in adjacency[current]:
            in_degree[neighbor] -= 1
            layers[neighbor] = max(layers.get(neighbor, 0), layers[current] + 1)
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    # nodes stuck on a cycle never reach in-degree zero
    for nid in ids:
        layers.setdefault(nid, 0)
    return layers


def hierarchical_layout(graph: Graph, opts: LayoutOptions, root_id: Optional[str] = None) -> Graph:
    if not graph.nodes:
        return graph

    layers = _assign_layers(graph)
    grouped: Dict[int, List[str]] = {}
    for node in graph.nodes:
        grouped.setdefault(layers[node.id], []).append(node.id)

    adjacency: Dict[str, List[str]] = {n.id: [] for n in graph.nodes}
    for edge in graph.edges:
        if edge.source in adjacency:
            adjacency[edge.source].append(edge.target)

    max_layer = max(grouped)
    for _ in range(4):
        for layer in range(1, max_layer + 1):
            previous = {nid: idx for idx, nid in enumerate(grouped.get(layer - 1, []))}

            def barycenter(nid: str) -> float:
                spots = [previous[n] for n in adjacency[nid] if n in previous]
                return sum(spots) / len(spots) if spots else 0.0

            grouped[layer] = sorted(grouped.get(layer, []), key=barycenter)

    layer_height = (opts.height - 2 * opts.padding) / max(max_layer, 1)
    layer_width = opts.width - 2 * opts.padding
    node_map = graph.node_map()
    for layer, members in grouped.items():
        spacing = layer_width / max(len(members), 1)
        for index, nid in enumerate(members):
            node_map[nid].position = Position(
                x=round(opts.padding + (index + 0.5) * spacing, 2),
                y=round(opts.padding + layer * layer_height, 2),
            )
    return graph


# ===================================================================
# Radial
# ===================================================================

def radial_layout(graph: Graph, opts: LayoutOptions, root_id: Optional[str] = None) -> Graph:
    if not graph.nodes:
        return graph

    cx, cy = opts.width / 2, opts.height / 2
    max_radius = min(opts.width, opts.height) / 2 - opts.padding

    adjacency: Dict[str, List[str]] = {n.id: [] for n in graph.nodes}
    in_degree = {n.id: 0 for n in graph.nodes}
    for edge in graph.edges:
        if edge.source in adjacency and edge.target in in_degree:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    root = root_id if root_id in adjacency else None
    if root is None:
        root = next((nid for nid, deg in in_degree.items() if deg == 0), graph.nodes[0].id)

    levels = {root: 0}
    queue = deque([root])
    while queue:
        current = queue.popleft()
        for neighbor in adjacency[current]:
            if neighbor not in levels:
                levels[neighbor] = levels[current] + 1
                queue.append(neighbor)

    grouped: Dict[int, List[str]] = {}
    for node in graph.nodes:
        grouped.setdefault(levels.get(node.id, 0), []).append(node.id)

    radius_step = max_radius / max(max(grouped), 1)
    node_map = graph.node_map()
    for level, members in grouped.items():
        if level == 0:
            for nid in members:
                node_map[nid].position = Position(x=cx, y=cy)
            continue
        radius = level * radius_step
        angle_step = 2 * math.pi / len(members)
        for index, nid in enumerate(members):
            angle = index * angle_step - math.pi / 2
            node_map[nid].position = Position(
                x=round(cx + radius * math.cos(angle), 2),
                y=round(cy + radius * math.sin(angle), 2),
            )
    return graph


# ===================================================================
# Organic (Fruchterman-Reingold)
# ===================================================================

def organic_layout(graph: Graph, opts: LayoutOptions, root_id: Optional[str] = None) -> Graph:
    nodes = graph.nodes
    if not nodes:
        return graph

    rng = _seeded_rng(graph, root_id)
    k = math.sqrt(opts.width * opts.height / len(nodes))
    temperature = opts.width / 10
    pos = {
        n.id: [
            opts.padding + rng.random() * (opts.width - 2 * opts.padding),
            opts.padding + rng.random() * (opts.height - 2 * opts.padding),
        ]
        for n in nodes
    }
    ids = [n.id for n in nodes]
    iterations = _effective_iterations(len(ids), opts.iterations)

    for step in range(iterations):
        current_temp = temperature * (1 - step / iterations)
        disp = {nid: [0.0, 0.0] for nid in ids}

        for i in range(len(ids)):
            a = pos[ids[i]]
            for j in range(i + 1, len(ids)):
                b = pos[ids[j]]
                dx, dy = b[0] - a[0], b[1] - a[1]
                dist = math.hypot(dx, dy) or 0.01
                push = k * k / dist
                fx, fy = dx / dist * push, dy / dist * push
                disp[ids[i]][0] -= fx
                disp[ids[i]][1] -= fy
                disp[ids[j]][0] += fx
                disp[ids[j]][1] += fy

        for edge in graph.edges:
            if edge.source not in pos or edge.target not in pos:
                continue
            s, t = pos[edge.source], pos[edge.target]
            dx, dy = t[0] - s[0], t[1] - s[1]
            dist = math.hypot(dx, dy) or 0.01
            pull = dist * dist / k
            fx, fy = dx / dist * pull, dy / dist * pull
            disp[edge.source][0] += fx
            disp[edge.source][1] += fy
            disp[edge.target][0] -= fx
            disp[edge.target][1] -= fy

        for nid in ids:
            d = disp[nid]
            length = math.hypot(d[0], d[1])
            p = pos[nid]
            if length > 0:
                limited = min(length, current_temp)
                p[0] += d[0] / length * limited
                p[1] += d[1] / length * limited
            p[0] = _clamp(p[0], opts.padding, opts.width - opts.padding)
            p[1] = _clamp(p[1], opts.padding, opts.height - opts.padding)

    for node in nodes:
        x, y = pos[node.id]
        node.position = Position(x=round(x, 2), y=round(y, 2))
    return graph


LAYOUTS = {
    "force": force_directed_layout,
    "hierarchical": hierarchical_layout,
    "radial": radial_layout,
    "organic": organic_layout,
}


def apply_layout(
    graph: Graph,
    layout_type: str,
    root_id: Optional[str] = None,
    options: Optional[LayoutOptions] = None,
) -> Graph:
    """Position every node of *graph* with the named algorithm.

    Unknown names fall back to the force-directed layout.
    """
    opts = options or LayoutOptions()
    logger.debug("Applying %s layout to %d nodes", layout_type, len(graph.nodes))
    algorithm = LAYOUTS.get(layout_type)
    if algorithm is None:
        logger.warning("Unknown layout type %r, using force-directed", layout_type)
        algorithm = force_directed_layout
    return algorithm(graph, opts, root_id)
