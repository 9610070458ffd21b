"""
FieldRegistry: the process-wide, read-only field schema.

The registry is built once from the descriptor table delivered by the
remote service and is then passed to every Bug. It owns the derived
DependencyIndex used for change propagation:

- choice_dependents: field -> fields whose choice set depends on it
- visibility_dependents: field -> fields whose visibility depends on it
- alias_map: internal name -> field name
"""
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field

from bayot.errors import SchemaError, UnknownFieldError
from bayot.fields.dependency import CycleStatus, DependencyKind, FieldDependencyGraph
from bayot.fields.models import FieldDescriptor


class DependencyIndex(BaseModel):
    """Reverse dependency lookups derived from a descriptor table."""
    model_config = ConfigDict(frozen=True)

    choice_dependents: Dict[str, Tuple[str, ...]] = Field(
        default_factory=dict,
        description="Reverse of value_field"
    )

    visibility_dependents: Dict[str, Tuple[str, ...]] = Field(
        default_factory=dict,
        description="Reverse of visibility_field"
    )

    alias_map: Dict[str, str] = Field(
        default_factory=dict,
        description="internal_name -> name"
    )

    field_order: Tuple[str, ...] = Field(
        default=(),
        description="Field names with parents before dependents"
    )


class EntityContext(Protocol):
    """What is_mandatory needs to know about an entity's current state."""
    def is_visible(self, field: str) -> bool: ...
    def choices(self, field: str) -> List[str]: ...


class FieldRegistry:
    """
    Holds field descriptors and their dependency index.

    Args:
        descriptors: The field descriptor table

    Raises:
        SchemaError: On duplicate names, dangling value/visibility links
            or dependency cycles
    """
    _logger = logging.getLogger("FieldRegistry")

    def __init__(self, descriptors: Iterable[FieldDescriptor]):
        descriptors = list(descriptors)
        self.index = self.build(descriptors)
        self._fields: Mapping[str, FieldDescriptor] = MappingProxyType({d.name: d for d in descriptors})
        self._logger.info(f"FieldRegistry ready with {len(self._fields)} fields")

    @staticmethod
    def build(descriptors: Iterable[FieldDescriptor]) -> DependencyIndex:
        """
        Derive the dependency index of a descriptor table.

        Pure function of its input.

        Raises:
            SchemaError: If the table cannot be indexed
        """
        descriptors = list(descriptors)

        seen: Dict[str, FieldDescriptor] = {}
        for desc in descriptors:
            if desc.name in seen:
                raise SchemaError(f"Duplicate field name: {desc.name!r}")
            seen[desc.name] = desc

        alias_map: Dict[str, str] = {}
        for desc in descriptors:
            owner = alias_map.get(desc.internal_name)
            if owner is not None and owner != desc.name:
                raise SchemaError(
                    f"Internal name {desc.internal_name!r} is used by both {owner!r} and {desc.name!r}"
                )
            alias_map[desc.internal_name] = desc.name

        graph = FieldDependencyGraph()
        status = graph.build_graph(descriptors)
        if graph.dangling:
            child, kind, parent = graph.dangling[0]
            raise SchemaError(f"Field {child!r} has {kind.value}_field {parent!r}, which is not a known field")
        if status == CycleStatus.CYCLE_DETECTED:
            cycle = " -> ".join(graph.get_cycles()[0])
            raise SchemaError(f"Field dependency cycle: {cycle}")

        choice_dependents = {}
        visibility_dependents = {}
        for name in graph.order:
            by_value = graph.get_dependents(name, DependencyKind.value)
            if by_value:
                choice_dependents[name] = tuple(by_value)
            by_visibility = graph.get_dependents(name, DependencyKind.visibility)
            if by_visibility:
                visibility_dependents[name] = tuple(by_visibility)

        return DependencyIndex(
            choice_dependents=choice_dependents,
            visibility_dependents=visibility_dependents,
            alias_map=alias_map,
            field_order=tuple(graph.get_topological_sort()),
        )

    @property
    def fields(self) -> Mapping[str, FieldDescriptor]:
        return self._fields

    def names(self) -> List[str]:
        """Field names with every parent before its dependents."""
        return list(self.index.field_order)

    def __contains__(self, name: Any) -> bool:
        return name in self._fields or name in self.index.alias_map

    def __iter__(self):
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    def resolve(self, name: str) -> FieldDescriptor:
        """
        Look a field up by name, falling back to its internal alias.

        Raises:
            UnknownFieldError: If nothing matches
        """
        desc = self._fields.get(name)
        if desc is not None:
            return desc
        alias = self.index.alias_map.get(name)
        if alias is not None:
            return self._fields[alias]
        raise UnknownFieldError(name)

    def canonical_name(self, name: str) -> str:
        return self.resolve(name).name

    def choice_dependents(self, name: str) -> Tuple[str, ...]:
        return self.index.choice_dependents.get(name, ())

    def visibility_dependents(self, name: str) -> Tuple[str, ...]:
        return self.index.visibility_dependents.get(name, ())

    def is_mandatory(self, field: str, entity: EntityContext) -> bool:
        """
        Whether ``field`` must be presented to the user as required.

        True only for a mandatory field that is visible in ``entity`` and,
        when it is selectable, has more than one legal choice. A mandatory
        selectable field with a single legal value is auto-filled instead.
        """
        desc = self.resolve(field)
        if not desc.is_mandatory:
            return False
        if not entity.is_visible(desc.name):
            return False
        if desc.values:
            return len(entity.choices(desc.name)) > 1
        return True
