"""
Fetches the bug field schema from the remote service.

The schema arrives in three round trips:
1. ``Bug.fields``: every field with its values and dependency links
2. ``Product.get_enterable_products``: ids of products the user may file in
3. ``Product.get``: names of those products, which become the values of the
   ``product`` field

Raw fields are converted to FieldDescriptors here. Built-in fields that the
create/update API supports get fixed descriptor overrides; custom fields
shown on bug entry get their type from the numeric wire code; everything
else is skipped.
"""
import logging
from typing import Any, Dict, List, Optional

from bayot.errors import SchemaError
from bayot.fields.models import FieldDescriptor, FieldType, FieldValue
from bayot.fields.registry import FieldRegistry
from bayot.rpc.call import RpcCall
from bayot.rpc.deferred import Deferred
from bayot.rpc.transport import RpcTransport

# Internal schema names that differ from the create/update parameter names
RPC_NAME_MAP: Dict[str, str] = {
    "rep_platform": "platform",
    "bug_severity": "severity",
    "bug_status": "status",
    "longdesc": "description",
    "short_desc": "summary",
}

# Numeric field type codes used by the schema listing
WIRE_TYPES: Dict[int, FieldType] = {
    0: FieldType.STRING,
    1: FieldType.STRING,
    2: FieldType.SELECT,
    3: FieldType.MULTI,
    4: FieldType.TEXT,
    5: FieldType.DATE,
    6: FieldType.BUGID,
    7: FieldType.URL,
    8: FieldType.KEYWORDS,
}

# Built-in fields supported by Bug.create / Bug.update
BUILTIN_FIELDS: Dict[str, Dict[str, Any]] = {
    "product":        {"is_mandatory": True, "type": FieldType.SELECT},
    "component":      {"is_mandatory": True, "type": FieldType.SELECT},
    "version":        {"is_mandatory": True, "type": FieldType.SELECT},
    "summary":        {"is_mandatory": True},
    "description":    {"type": FieldType.TEXT},
    "op_sys":         {"type": FieldType.SELECT},
    "platform":       {"type": FieldType.SELECT},
    "priority":       {"type": FieldType.SELECT},
    "severity":       {"type": FieldType.SELECT},
    "alias":          {},
    "assigned_to":    {"type": FieldType.USER},
    "cc":             {"type": FieldType.USER, "multivalue": True},
    "qa_contact":     {"type": FieldType.USER},
    "status":         {"type": FieldType.SELECT},
    "keywords":       {"type": FieldType.KEYWORDS, "multivalue": True},
    "estimated_time": {},
    "blocked":        {"type": FieldType.BUGID, "multivalue": True},
    "dependson":      {"type": FieldType.BUGID, "multivalue": True},
}

COMMENT_FIELD = FieldDescriptor(
    name="comment",
    display_name="Comment",
    type=FieldType.TEXT,
    creatable=False,
    is_comment=True,
)


def public_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return RPC_NAME_MAP.get(name, name)


def convert_field(raw: Dict[str, Any]) -> Optional[FieldDescriptor]:
    """
    Convert one raw schema entry into a FieldDescriptor.

    Returns None for fields the create/update API does not accept.
    """
    internal = raw["name"]
    name = public_name(internal)

    if raw.get("is_custom") and raw.get("is_on_bug_entry"):
        field_type = WIRE_TYPES.get(raw.get("type", 0), FieldType.STRING)
        overrides: Dict[str, Any] = {
            "type": field_type,
            "is_mandatory": bool(raw.get("is_mandatory")),
        }
    elif name in BUILTIN_FIELDS:
        overrides = dict(BUILTIN_FIELDS[name])
    else:
        return None

    return FieldDescriptor(
        name=name,
        internal_name=internal,
        display_name=raw.get("display_name") or name,
        value_field=public_name(raw.get("value_field")),
        visibility_field=public_name(raw.get("visibility_field")),
        visibility_values=raw.get("visibility_values") or [],
        values=raw.get("values") or [],
        **overrides,
    )


class FieldLoader:
    """
    Loads the field registry once and shares it.

    ``load()`` returns a Deferred resolving with the FieldRegistry. While a
    load is in flight, or after it succeeded, the same handle is returned.
    A failed load may be retried.
    """
    _logger = logging.getLogger("FieldLoader")

    def __init__(self, transport: RpcTransport):
        self.transport = transport
        self._load: Optional[Deferred] = None
        self._descriptors: Dict[str, FieldDescriptor] = {}

    @property
    def registry(self) -> Optional[FieldRegistry]:
        if self._load is not None and self._load.value:
            return self._load.value[0]
        return None

    def load(self) -> Deferred:
        if self._load is not None:
            return self._load
        self._load = Deferred("FieldLoader.load")
        self._descriptors = {}
        self._logger.info("Fetching bug field schema")
        RpcCall(self.transport, "Bug", "fields").done(self._process_fields).fail(self._on_fail)
        return self._load

    def _on_fail(self, error) -> None:
        deferred, self._load = self._load, None
        self._logger.error(f"Failed to get bug fields: {error.message}")
        deferred.reject(error)

    def _process_fields(self, result: Dict[str, Any]) -> None:
        try:
            for raw in result.get("fields", []):
                desc = convert_field(raw)
                if desc is None:
                    self._logger.debug(f"Skipping field {raw.get('name')!r}")
                    continue
                self._descriptors[desc.name] = desc
        except (KeyError, ValueError) as e:
            self._reject_schema(SchemaError(f"Malformed field listing: {e}"))
            return
        self._descriptors.setdefault(COMMENT_FIELD.name, COMMENT_FIELD)
        self._logger.debug(f"Converted {len(self._descriptors)} fields")

        # Enterable products have to be fetched separately
        RpcCall(self.transport, "Product", "get_enterable_products").done(
            self._get_products
        ).fail(self._on_fail)

    def _get_products(self, result: Dict[str, Any]) -> None:
        RpcCall(self.transport, "Product", "get", {"ids": result.get("ids", [])}).done(
            self._process_products
        ).fail(self._on_fail)

    def _process_products(self, result: Dict[str, Any]) -> None:
        values: List[FieldValue] = [
            FieldValue(name=product["name"], sort_key=0, visibility_values=[])
            for product in result.get("products", [])
        ]
        product = self._descriptors.get("product")
        if product is not None:
            self._descriptors["product"] = product.model_copy(update={"values": values})

        try:
            registry = FieldRegistry(self._descriptors.values())
        except SchemaError as e:
            self._reject_schema(e)
            return
        self._logger.info(f"Field schema loaded: {len(registry)} fields, {len(values)} products")
        self._load.resolve(registry)

    def _reject_schema(self, error: SchemaError) -> None:
        deferred, self._load = self._load, None
        self._logger.error(f"Invalid field schema: {error}")
        deferred.reject(error)
