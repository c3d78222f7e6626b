"""Hypothesis graph: nodes, causal edges and tree projection."""

from thesis_validator.graph.schemas import (
    CausalEdge,
    EdgeCreate,
    GraphSnapshot,
    Hypothesis,
    HypothesisCreate,
    HypothesisStatus,
    HypothesisType,
    HypothesisUpdate,
    Importance,
    RelationshipType,
    Testability,
    TreeNode,
)
from thesis_validator.graph.store import GraphStore
from thesis_validator.graph.tree import build_tree, flatten

__all__ = [
    "CausalEdge",
    "EdgeCreate",
    "GraphSnapshot",
    "GraphStore",
    "Hypothesis",
    "HypothesisCreate",
    "HypothesisStatus",
    "HypothesisType",
    "HypothesisUpdate",
    "Importance",
    "RelationshipType",
    "Testability",
    "TreeNode",
    "build_tree",
    "flatten",
]
