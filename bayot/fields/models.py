"""
Field descriptor models.

A FieldDescriptor is the schema metadata for one bug attribute: its type,
its legal values and the fields it depends on for its choice set and its
visibility.
"""
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FieldType(str, Enum):
    STRING = "string"
    SELECT = "select"
    MULTI = "multiselect"
    TEXT = "text"
    DATE = "datetime"
    BUGID = "bugid"
    URL = "url"
    KEYWORDS = "keywords"
    USER = "user"
    BOOLEAN = "boolean"


class FieldValue(BaseModel):
    """One legal value of a selectable field."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(
        description="Value name as sent to and received from the service"
    )

    sort_key: int = Field(
        default=0,
        description="Primary ordering key for choice lists"
    )

    is_default: bool = Field(
        default=False,
        description="Whether this value is the field default"
    )

    visibility_values: List[str] = Field(
        default_factory=list,
        description="Values of the controlling field for which this value is legal"
    )

    can_change_to: Optional[List[str]] = Field(
        default=None,
        description="Workflow transitions allowed from this value; None for non-workflow fields"
    )

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("visibility_values", mode="before")
    @classmethod
    def coerce_visibility_values(cls, value: Any) -> List[str]:
        return [str(v) for v in value or []]

    @field_validator("can_change_to", mode="before")
    @classmethod
    def coerce_transitions(cls, value: Any) -> Optional[List[str]]:
        # The wire carries transitions as [{"name": ...}, ...]
        if value is None:
            return None
        return [str(v["name"]) if isinstance(v, dict) else str(v) for v in value]


class FieldDescriptor(BaseModel):
    """
    Schema metadata for one bug attribute.

    ``name`` is the identifier used by the create/update API and by callers;
    ``internal_name`` is what the schema listing and change reports use.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(
        description="Stable identifier of the field"
    )

    internal_name: str = Field(
        default="",
        description="Alias used by the remote schema; defaults to name"
    )

    display_name: str = Field(
        default="",
        description="Human readable label; defaults to name"
    )

    type: FieldType = Field(
        default=FieldType.STRING,
        description="Value type of the field"
    )

    multivalue: bool = Field(
        default=False,
        description="Whether the field holds a list with set semantics"
    )

    immutable: bool = Field(
        default=False,
        description="Writes to immutable fields are ignored"
    )

    is_mandatory: bool = Field(
        default=False,
        description="Whether a value is required when visible"
    )

    creatable: bool = Field(
        default=True,
        description="Whether the field may be sent when creating a bug"
    )

    is_comment: bool = Field(
        default=False,
        description="Free-text comment field, sent as {body: value} on update"
    )

    value_field: Optional[str] = Field(
        default=None,
        description="Field whose current value restricts this field's choices"
    )

    visibility_field: Optional[str] = Field(
        default=None,
        description="Field whose current value controls this field's visibility"
    )

    visibility_values: List[str] = Field(
        default_factory=list,
        description="Values of visibility_field for which this field is shown"
    )

    values: List[FieldValue] = Field(
        default_factory=list,
        description="Ordered legal values for selectable fields"
    )

    @field_validator("value_field", "visibility_field", mode="before")
    @classmethod
    def empty_link_is_none(cls, value: Any) -> Optional[str]:
        return value or None

    @field_validator("visibility_values", mode="before")
    @classmethod
    def coerce_visibility_values(cls, value: Any) -> List[str]:
        return [str(v) for v in value or []]

    @model_validator(mode="before")
    @classmethod
    def fill_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        name = data.get("name")
        if not data.get("internal_name"):
            data["internal_name"] = name
        if not data.get("display_name"):
            data["display_name"] = name
        if data.get("type") in (FieldType.MULTI, FieldType.KEYWORDS, "multiselect", "keywords"):
            data["multivalue"] = True
        return data

    @property
    def is_workflow(self) -> bool:
        """True when transitions between values are restricted."""
        return any(v.can_change_to is not None for v in self.values)

    def get_value(self, name: Any) -> Optional[FieldValue]:
        for value in self.values:
            if value.name == name:
                return value
        return None
