"""
Read-time projection of the hypothesis graph onto a display tree.

The stored graph is a general directed graph: nodes may have several
in-edges and edges may form cycles. Rendering needs a tree, so each node is
attached under exactly one parent, picked as:

1. its declared ``parent_id``, when that node exists, else
2. the source of its earliest in-edge.

The thesis node is always a root. Nodes that cannot be reached from any root
(e.g. members of a parent cycle) are promoted to extra roots in creation
order. The input is never modified.
"""

from collections import defaultdict
from uuid import UUID

from thesis_validator.graph.schemas import (
    CausalEdge,
    GraphSnapshot,
    Hypothesis,
    HypothesisType,
    TreeNode,
)


def _pick_parents(
    nodes: list[Hypothesis],
    edges: list[CausalEdge],
) -> dict[UUID, tuple[UUID, str]]:
    known = {n.id for n in nodes}
    first_in_edge: dict[UUID, UUID] = {}
    for edge in sorted(edges, key=lambda e: e.created_at):
        if edge.source_id == edge.target_id or edge.source_id not in known:
            continue
        first_in_edge.setdefault(edge.target_id, edge.source_id)

    parents: dict[UUID, tuple[UUID, str]] = {}
    for node in nodes:
        if node.type == HypothesisType.THESIS:
            continue
        if node.parent_id is not None and node.parent_id in known and node.parent_id != node.id:
            parents[node.id] = (node.parent_id, "parent")
        elif node.id in first_in_edge:
            parents[node.id] = (first_in_edge[node.id], "edge")
    return parents


def build_tree(graph: GraphSnapshot) -> list[TreeNode]:
    """
    Project a graph snapshot onto a forest.

    Args:
        graph: Nodes and edges of one engagement.

    Returns:
        Root tree nodes: the thesis first, then other parentless nodes and
        promoted cycle members, each in creation order.
    """
    nodes = sorted(graph.nodes, key=lambda n: n.created_at)
    by_id = {n.id: n for n in nodes}
    parents = _pick_parents(nodes, graph.edges)

    children: dict[UUID, list[tuple[UUID, str]]] = defaultdict(list)
    for node in nodes:
        if node.id in parents:
            parent_id, how = parents[node.id]
            children[parent_id].append((node.id, how))

    visited: set[UUID] = set()

    def attach(root_id: UUID) -> TreeNode:
        visited.add(root_id)
        root = TreeNode(hypothesis=by_id[root_id], attached_by="root")
        stack = [root]
        while stack:
            tree_node = stack.pop()
            for child_id, how in children.get(tree_node.hypothesis.id, []):
                if child_id in visited:
                    continue
                visited.add(child_id)
                child = TreeNode(hypothesis=by_id[child_id], attached_by=how)
                tree_node.children.append(child)
                stack.append(child)
        return root

    roots: list[TreeNode] = []
    ordered = sorted(nodes, key=lambda n: n.type != HypothesisType.THESIS)
    for node in ordered:
        if node.id not in parents and node.id not in visited:
            roots.append(attach(node.id))
    # Whatever is left hangs off a cycle with no way in from a root
    for node in nodes:
        if node.id not in visited:
            roots.append(attach(node.id))
    return roots


def flatten(roots: list[TreeNode]) -> list[tuple[int, Hypothesis]]:
    """Depth-first (depth, hypothesis) pairs, handy for indented rendering."""
    out: list[tuple[int, Hypothesis]] = []
    stack = [(0, r) for r in reversed(roots)]
    while stack:
        depth, tree_node = stack.pop()
        out.append((depth, tree_node.hypothesis))
        stack.extend((depth + 1, c) for c in reversed(tree_node.children))
    return out
