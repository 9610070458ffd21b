"""
Value normalization and wire-level diffs for bug persistence.

The update protocol speaks in set deltas for multivalue fields: it expects
``{"add": [...], "remove": [...]}`` rather than the full new list, so the
delta has to be computed against the confirmed state. Create requests take
plain values.

Update responses report what actually changed as comma-joined strings
(``{"added": "a, b", "removed": "c"}``); those are split again and folded
back into the confirmed state by :func:`merge_changes`.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from bayot.fields.models import FieldDescriptor, FieldType
from bayot.fields.registry import FieldRegistry

logger = logging.getLogger(__name__)


##############################
# 1) Normalization and equality
##############################

def split_list(value: str) -> List[str]:
    """Split a comma-delimited string, dropping blanks."""
    return [part.strip() for part in value.split(",") if part.strip()]


def _to_bug_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def normalize_value(desc: FieldDescriptor, value: Any) -> Any:
    """
    Coerce a caller supplied value to the field's canonical form.

    Multivalue fields become lists (a comma-delimited string is split, None
    becomes an empty list). Bug id fields become integers, element-wise for
    lists.

    Raises:
        ValueError: If a bug id cannot be converted to an integer
    """
    if desc.multivalue:
        if value is None:
            items: List[Any] = []
        elif isinstance(value, str):
            items = split_list(value)
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
        else:
            items = [value]
        if desc.type == FieldType.BUGID:
            items = [_to_bug_id(v) for v in items if v is not None and v != ""]
        return items

    if desc.type == FieldType.BUGID:
        return _to_bug_id(value)
    return value


def empty_value(desc: FieldDescriptor) -> Any:
    return [] if desc.multivalue else None


def values_equal(desc: FieldDescriptor, a: Any, b: Any) -> bool:
    """Order independent comparison for multivalue fields, plain otherwise."""
    if desc.multivalue:
        return {str(v) for v in a or []} == {str(v) for v in b or []}
    return a == b


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == ()


##############################
# 2) Request parameters
##############################

def build_create_params(registry: FieldRegistry, pending: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Parameters for a create call.

    Only creatable fields with a non-empty pending value are sent.
    """
    params: Dict[str, Any] = {}
    for name, value in pending.items():
        desc = registry.resolve(name)
        if not desc.creatable:
            logger.debug(f"Not sending {name} on create: field is not creatable")
            continue
        if desc.multivalue:
            value = normalize_value(desc, value)
        if is_empty(value):
            continue
        params[desc.name] = value
    return params


def multivalue_delta(pending: Any, confirmed: Any) -> Dict[str, List[Any]]:
    """
    Set difference between a pending and a confirmed list.

    Values are compared as strings so ``1`` and ``"1"`` are the same bug id.
    Order of each side is preserved.
    """
    pending = list(pending or [])
    confirmed = list(confirmed or [])
    confirmed_keys = {str(v) for v in confirmed}
    pending_keys = {str(v) for v in pending}
    return {
        "add": [v for v in pending if str(v) not in confirmed_keys],
        "remove": [v for v in confirmed if str(v) not in pending_keys],
    }


def build_update_params(
    registry: FieldRegistry,
    bug_id: Any,
    confirmed: Mapping[str, Any],
    pending: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Parameters for an update call: ``{"ids": [bug_id], <field>: ...}``.

    Comment fields are wrapped as ``{"body": value}``, multivalue fields are
    sent as add/remove deltas, anything else is forwarded as is.
    """
    params: Dict[str, Any] = {"ids": [bug_id]}
    for name, value in pending.items():
        desc = registry.resolve(name)
        if desc.is_comment:
            params[desc.name] = {"body": value}
        elif desc.multivalue:
            params[desc.name] = multivalue_delta(value, confirmed.get(desc.name))
        else:
            params[desc.name] = value
    return params


##############################
# 3) Merging server reported changes
##############################

def merge_changes(
    registry: FieldRegistry,
    confirmed: Dict[str, Any],
    changes: Mapping[str, Mapping[str, Any]],
) -> List[str]:
    """
    Apply an update response's ``changes`` to ``confirmed`` in place.

    Args:
        registry: Field registry, used to resolve internal names
        confirmed: Confirmed state to update
        changes: ``{field: {"added": "a, b", "removed": "c"}}``

    Returns:
        Names of the fields that were merged. Fields the registry does not
        know (e.g. server side timestamps) are skipped.
    """
    merged = []
    for key, change in changes.items():
        if key not in registry:
            logger.debug(f"Ignoring change to unknown field {key!r}")
            continue
        desc = registry.resolve(key)
        added = change.get("added") or ""
        removed = change.get("removed") or ""
        if desc.multivalue:
            removed_keys = {str(v) for v in normalize_value(desc, removed)}
            current = [v for v in confirmed.get(desc.name) or [] if str(v) not in removed_keys]
            current_keys = {str(v) for v in current}
            for v in normalize_value(desc, added):
                if str(v) not in current_keys:
                    current.append(v)
                    current_keys.add(str(v))
            confirmed[desc.name] = current
        else:
            confirmed[desc.name] = normalize_value(desc, added) if added != "" else None
        merged.append(desc.name)
    return merged
