"""
Bug entity and the diff engine used to persist it.
"""
from .entity import Bug
from .diff import (
    build_create_params,
    build_update_params,
    merge_changes,
    multivalue_delta,
    normalize_value,
    split_list,
    values_equal,
)

__all__ = [
    "Bug",
    "build_create_params",
    "build_update_params",
    "merge_changes",
    "multivalue_delta",
    "normalize_value",
    "split_list",
    "values_equal",
]
