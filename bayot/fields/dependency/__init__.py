"""
Field dependency graph implementation.

This module computes the dependency graph of a field descriptor table and
detects dangling links and cycles.
"""
from .graph import FieldDependencyGraph, CycleStatus, DependencyKind, GraphNode

__all__ = ["FieldDependencyGraph", "CycleStatus", "DependencyKind", "GraphNode"]
