"""
Implementation of the field dependency graph.

Nodes are field names. An edge ``child -> parent`` means the child reads the
parent's current value, either to restrict its choice set (``value_field``)
or to decide whether it is shown (``visibility_field``). Propagation walks
edges in the reverse direction, from a mutated parent to its dependents.

The graph is used to reject dangling links and cycles before any entity is
built, and to order fields so parents are handled before dependents.
"""
from typing import Dict, Iterable, List, Optional, Set, Tuple
from enum import Enum
import logging
from pydantic import BaseModel, Field

from bayot.fields.models import FieldDescriptor

logger = logging.getLogger("field_dependencies")


class CycleStatus(Enum):
    """Status of cycle detection."""
    NO_CYCLE = 0
    CYCLE_DETECTED = 1


class DependencyKind(str, Enum):
    value = "value"
    visibility = "visibility"


class GraphNode(BaseModel):
    """Represents one field in the dependency graph."""
    field_name: str
    # (kind, parent field) pairs this field reads
    dependencies: Set[Tuple[DependencyKind, str]] = Field(default_factory=set)
    # (kind, dependent field) pairs that read this field
    dependents: Set[Tuple[DependencyKind, str]] = Field(default_factory=set)

    def add_dependency(self, kind: DependencyKind, parent: str) -> None:
        self.dependencies.add((kind, parent))

    def add_dependent(self, kind: DependencyKind, child: str) -> None:
        self.dependents.add((kind, child))

    def __str__(self) -> str:
        return f"Node({self.field_name}, deps={len(self.dependencies)}, dependents={len(self.dependents)})"

    def __repr__(self) -> str:
        return self.__str__()


class FieldDependencyGraph(BaseModel):
    """
    Computes and holds the dependency graph of a field descriptor table.

    This class provides methods to:
    1. Build the graph from descriptors, recording dangling links
    2. Detect cycles (a self-reference is a cycle of length one)
    3. Produce a topological order (parents first)
    4. Query the dependents of a field by dependency kind
    """
    nodes: Dict[str, GraphNode] = Field(default_factory=dict)
    cycles: List[List[str]] = Field(default_factory=list)
    dangling: List[Tuple[str, DependencyKind, str]] = Field(default_factory=list)
    # Insertion order of the descriptor table, used to keep orderings stable
    order: List[str] = Field(default_factory=list)

    def build_graph(self, descriptors: Iterable[FieldDescriptor]) -> CycleStatus:
        """
        Build the graph for a descriptor table.

        Args:
            descriptors: Field descriptors keyed by their ``name``

        Returns:
            CycleStatus indicating if any cycles were detected. Dangling
            links are recorded in ``self.dangling``.
        """
        self.nodes.clear()
        self.cycles.clear()
        self.dangling.clear()
        self.order.clear()

        descriptors = list(descriptors)
        for desc in descriptors:
            self.nodes[desc.name] = GraphNode(field_name=desc.name)
            self.order.append(desc.name)

        for desc in descriptors:
            for kind, parent in self._links(desc):
                if parent not in self.nodes:
                    logger.warning(f"Field {desc.name} has dangling {kind.value} link to {parent}")
                    self.dangling.append((desc.name, kind, parent))
                    continue
                self.nodes[desc.name].add_dependency(kind, parent)
                self.nodes[parent].add_dependent(kind, desc.name)

        # DFS over child -> parent edges
        has_cycle = False
        visited: Set[str] = set()
        path: List[str] = []

        def find_cycles(name: str) -> None:
            nonlocal has_cycle
            if name in path:
                cycle = path[path.index(name):] + [name]
                logger.warning(f"Detected cycle: {' -> '.join(cycle)}")
                self.cycles.append(cycle)
                has_cycle = True
                return
            if name in visited:
                return

            path.append(name)
            for _, parent in sorted(self.nodes[name].dependencies):
                find_cycles(parent)
            path.pop()
            visited.add(name)

        for name in self.order:
            find_cycles(name)

        logger.info(f"Built field dependency graph with {len(self.nodes)} nodes")
        if self.cycles:
            logger.warning(f"Detected {len(self.cycles)} cycles in the field graph")

        return CycleStatus.CYCLE_DETECTED if has_cycle else CycleStatus.NO_CYCLE

    @staticmethod
    def _links(desc: FieldDescriptor) -> List[Tuple[DependencyKind, str]]:
        links = []
        if desc.value_field:
            links.append((DependencyKind.value, desc.value_field))
        if desc.visibility_field:
            links.append((DependencyKind.visibility, desc.visibility_field))
        return links

    def get_node(self, name: str) -> Optional[GraphNode]:
        return self.nodes.get(name)

    def get_dependents(self, name: str, kind: Optional[DependencyKind] = None) -> List[str]:
        """
        Fields that read ``name``, in descriptor table order.

        Args:
            name: Parent field
            kind: Restrict to one dependency kind; both kinds when None
        """
        node = self.get_node(name)
        if node is None:
            return []
        children = {child for k, child in node.dependents if kind is None or k == kind}
        return [n for n in self.order if n in children]

    def get_topological_sort(self) -> List[str]:
        """
        Return field names with every parent before its dependents.

        Fields at the same depth keep descriptor table order. Only
        meaningful for an acyclic graph.
        """
        depths: Dict[str, int] = {}

        def calculate_depth(name: str, path: Set[str]) -> int:
            if name in depths:
                return depths[name]
            if name in path:
                return 0
            parents = [p for _, p in self.nodes[name].dependencies]
            depth = 0
            for parent in parents:
                depth = max(depth, calculate_depth(parent, path | {name}) + 1)
            depths[name] = depth
            return depth

        for name in self.order:
            calculate_depth(name, set())

        position = {name: i for i, name in enumerate(self.order)}
        return sorted(self.order, key=lambda n: (depths[n], position[n]))

    def get_cycles(self) -> List[List[str]]:
        return self.cycles
