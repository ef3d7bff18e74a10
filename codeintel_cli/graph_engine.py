"""In-memory graph engine: incremental construction and read-only analysis.

Two relations share one node table:

- **containment** (``contains`` edges, ``parent_id``) — a tree from files to
  the symbols they define;
- **dependency** (every other edge type) — arbitrary, possibly cyclic.

They are kept in separate adjacency partitions so that traversal algorithms
(cycles, SCC, importance, centrality) only ever see dependency edges.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .models import Graph, GraphEdge, GraphMetadata, GraphNode, edge_key

logger = logging.getLogger(__name__)

CONTAINS = "contains"


# ===================================================================
# GraphBuilder
# ===================================================================

class GraphBuilder:
    """Mutable graph under construction with merge-on-duplicate edges."""

    def __init__(self) -> None:
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._adjacency: Dict[str, Dict[str, None]] = {}
        self._reverse_adjacency: Dict[str, Dict[str, None]] = {}
        self._containment: Dict[str, Dict[str, None]] = {}

    def _ensure(self, node_id: str) -> None:
        self._adjacency.setdefault(node_id, {})
        self._reverse_adjacency.setdefault(node_id, {})
        self._containment.setdefault(node_id, {})

    def add_node(self, node: GraphNode) -> "GraphBuilder":
        if node.id in self._nodes:
            logger.debug("Node %s already exists, updating", node.id)
        self._nodes[node.id] = node
        self._ensure(node.id)
        return self

    def add_edge(self, edge: GraphEdge) -> "GraphBuilder":
        key = edge_key(edge.source, edge.type, edge.target)
        edge.id = key

        existing = self._edges.get(key)
        if existing is not None:
            existing.weight += edge.weight
            existing.metadata.count += edge.metadata.count
            return self

        self._edges[key] = edge
        self._ensure(edge.source)
        self._ensure(edge.target)
        if edge.type == CONTAINS:
            self._containment[edge.source][edge.target] = None
        else:
            self._adjacency[edge.source][edge.target] = None
            self._reverse_adjacency[edge.target][edge.source] = None
        return self

    def get_neighbors(self, node_id: str) -> List[str]:
        """Dependency targets of *node_id* (snapshot)."""
        return list(self._adjacency.get(node_id, {}))

    def get_incoming_neighbors(self, node_id: str) -> List[str]:
        """Nodes with a dependency edge into *node_id* (snapshot)."""
        return list(self._reverse_adjacency.get(node_id, {}))

    def get_children(self, node_id: str) -> List[str]:
        """Containment children recorded through ``contains`` edges."""
        return list(self._containment.get(node_id, {}))

    def get_edges_between(self, source_id: str, target_id: str) -> List[GraphEdge]:
        return [
            e for e in self._edges.values()
            if (e.source == source_id and e.target == target_id)
            or (e.source == target_id and e.target == source_id)
        ]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def build(self) -> Graph:
        nodes = list(self._nodes.values())
        edges = list(self._edges.values())

        # children are derived from parent_id, the authoritative containment link
        tree: Dict[str, List[str]] = {node.id: [] for node in nodes}
        for node in nodes:
            if node.parent_id and node.parent_id in tree:
                tree[node.parent_id].append(node.id)
        for node in nodes:
            node.children = list(tree[node.id])

        max_depth = 0
        for root in (n for n in nodes if not n.parent_id):
            max_depth = max(max_depth, _tree_depth(tree, root.id))

        return Graph(
            nodes=nodes,
            edges=edges,
            metadata=GraphMetadata(
                total_nodes=len(nodes),
                total_edges=len(edges),
                max_depth=max_depth,
            ),
        )


def _tree_depth(tree: Dict[str, List[str]], start_id: str) -> int:
    visited: Set[str] = set()
    queue = deque([(start_id, 0)])
    deepest = 0
    while queue:
        current, depth = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        deepest = max(deepest, depth)
        for child in tree.get(current, []):
            if child not in visited:
                queue.append((child, depth + 1))
    return deepest


# ===================================================================
# GraphAnalyzer
# ===================================================================

class GraphAnalyzer:
    """Read-only algorithms over a finished :class:`Graph`.

    Adjacency is built once at construction. Directed algorithms use the
    dependency partition; edges whose endpoints are not graph nodes are
    ignored.
    """

    def __init__(self, graph: Graph) -> None:
        self.graph = graph
        self._node_ids: List[str] = [n.id for n in graph.nodes]
        self._out: Dict[str, Dict[str, None]] = {nid: {} for nid in self._node_ids}
        self._in: Dict[str, Dict[str, None]] = {nid: {} for nid in self._node_ids}
        # undirected view over every edge type, for degree and components
        self._all_out: Dict[str, Dict[str, None]] = {nid: {} for nid in self._node_ids}
        self._all_in: Dict[str, Dict[str, None]] = {nid: {} for nid in self._node_ids}

        for edge in graph.edges:
            if edge.source not in self._out or edge.target not in self._out:
                continue
            self._all_out[edge.source][edge.target] = None
            self._all_in[edge.target][edge.source] = None
            if edge.type == CONTAINS:
                continue
            self._out[edge.source][edge.target] = None
            self._in[edge.target][edge.source] = None

    # ------------------------------------------------------------------
    # Reachability
    # ------------------------------------------------------------------

    def find_reachable(self, start_id: str, max_depth: int) -> Dict[str, int]:
        """Nodes reachable from *start_id* within *max_depth* hops."""
        return self._bfs(start_id, max_depth, self._out)

    def find_dependents(self, target_id: str, max_depth: int) -> Dict[str, int]:
        """Nodes that reach *target_id* within *max_depth* hops."""
        return self._bfs(target_id, max_depth, self._in)

    @staticmethod
    def _bfs(
        start_id: str,
        max_depth: int,
        adjacency: Dict[str, Dict[str, None]],
    ) -> Dict[str, int]:
        depths: Dict[str, int] = {}
        queue = deque([(start_id, 0)])
        while queue:
            current, depth = queue.popleft()
            if current in depths or depth > max_depth:
                continue
            depths[current] = depth
            for neighbor in adjacency.get(current, {}):
                if neighbor not in depths:
                    queue.append((neighbor, depth + 1))
        return depths

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def find_circular_dependencies(self) -> List[List[str]]:
        """Every back edge found by DFS yields one cycle.

        Overlapping cycles through shared nodes are reported separately.
        """
        cycles: List[List[str]] = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()
        path: List[str] = []

        for root in self._node_ids:
            if root in visited:
                continue
            visited.add(root)
            on_stack.add(root)
            path.append(root)
            stack: List[Tuple[str, Iterator[str]]] = [(root, iter(list(self._out[root])))]

            while stack:
                current, neighbors = stack[-1]
                descended = False
                for neighbor in neighbors:
                    if neighbor not in visited:
                        visited.add(neighbor)
                        on_stack.add(neighbor)
                        path.append(neighbor)
                        stack.append((neighbor, iter(list(self._out[neighbor]))))
                        descended = True
                        break
                    if neighbor in on_stack:
                        cycles.append(path[path.index(neighbor):])
                if descended:
                    continue
                stack.pop()
                path.pop()
                on_stack.discard(current)

        return cycles

    def find_strongly_connected_components(self) -> List[List[str]]:
        """Tarjan's algorithm; only components with two or more nodes."""
        components: List[List[str]] = []
        index: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        on_stack: Set[str] = set()
        scc_stack: List[str] = []
        counter = 0

        for root in self._node_ids:
            if root in index:
                continue
            index[root] = lowlink[root] = counter
            counter += 1
            scc_stack.append(root)
            on_stack.add(root)
            work: List[Tuple[str, Iterator[str]]] = [(root, iter(list(self._out[root])))]

            while work:
                current, neighbors = work[-1]
                descended = False
                for neighbor in neighbors:
                    if neighbor not in index:
                        index[neighbor] = lowlink[neighbor] = counter
                        counter += 1
                        scc_stack.append(neighbor)
                        on_stack.add(neighbor)
                        work.append((neighbor, iter(list(self._out[neighbor]))))
                        descended = True
                        break
                    if neighbor in on_stack:
                        lowlink[current] = min(lowlink[current], index[neighbor])
                if descended:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[current])

                if lowlink[current] == index[current]:
                    component: List[str] = []
                    while True:
                        member = scc_stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == current:
                            break
                    if len(component) > 1:
                        components.append(component)

        return components

    # ------------------------------------------------------------------
    # Importance / centrality
    # ------------------------------------------------------------------

    def calculate_importance_scores(
        self,
        damping_factor: float = 0.85,
        iterations: int = 20,
    ) -> Dict[str, float]:
        """PageRank-style scores after a fixed number of iterations.

        No convergence test is made. Score held by nodes without outgoing
        edges is spread evenly so every iteration sums to 1.0.
        """
        node_count = len(self._node_ids)
        if node_count == 0:
            return {}

        scores = {nid: 1.0 / node_count for nid in self._node_ids}
        out_degree = {nid: len(self._out[nid]) for nid in self._node_ids}

        for _ in range(iterations):
            dangling = sum(scores[nid] for nid in self._node_ids if out_degree[nid] == 0)
            new_scores: Dict[str, float] = {}
            for nid in self._node_ids:
                incoming = sum(scores[src] / out_degree[src] for src in self._in[nid])
                new_scores[nid] = (
                    (1 - damping_factor) / node_count
                    + damping_factor * (incoming + dangling / node_count)
                )
            scores = new_scores

        return scores

    def calculate_betweenness_centrality(self) -> Dict[str, float]:
        """Approximate betweenness, normalized to the maximum.

        Each source contributes one BFS-discovered shortest path per target
        (ties go to traversal order) instead of summing over all shortest
        paths. Callers rely on this numeric scale.
        """
        centrality = {nid: 0.0 for nid in self._node_ids}

        for source in self._node_ids:
            for path in self._shortest_paths(source).values():
                for intermediate in path[1:-1]:
                    centrality[intermediate] += 1

        highest = max(centrality.values(), default=0.0)
        if highest > 0:
            centrality = {nid: value / highest for nid, value in centrality.items()}
        return centrality

    def _shortest_paths(self, source_id: str) -> Dict[str, List[str]]:
        paths: Dict[str, List[str]] = {}
        queue = deque([(source_id, [source_id])])
        while queue:
            current, path = queue.popleft()
            if current in paths:
                continue
            paths[current] = path
            for neighbor in self._out.get(current, {}):
                if neighbor not in paths:
                    queue.append((neighbor, path + [neighbor]))
        return paths

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, float]:
        node_count = len(self.graph.nodes)
        edge_count = len(self.graph.edges)
        max_possible = node_count * (node_count - 1)
        density = edge_count / max_possible if max_possible > 0 else 0.0

        total_degree = 0
        max_degree = 0
        for nid in self._node_ids:
            degree = len(self._all_out[nid]) + len(self._all_in[nid])
            total_degree += degree
            max_degree = max(max_degree, degree)

        return {
            "node_count": node_count,
            "edge_count": edge_count,
            "density": density,
            "avg_degree": total_degree / node_count if node_count else 0.0,
            "max_degree": max_degree,
            "connected_components": self._count_connected_components(),
            "has_cycles": len(self.find_circular_dependencies()) > 0,
        }

    def _count_connected_components(self) -> int:
        visited: Set[str] = set()
        components = 0
        for root in self._node_ids:
            if root in visited:
                continue
            components += 1
            visited.add(root)
            stack = [root]
            while stack:
                current = stack.pop()
                for neighbor in list(self._all_out[current]) + list(self._all_in[current]):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        stack.append(neighbor)
        return components
