"""
Bug entity with a confirmed state and a pending overlay.

Key concepts:

1. CONFIRMED vs PENDING:
   - ``confirmed`` is the last state known to match the remote service
   - ``pending`` holds values set locally but not yet saved
   - ``value(field)`` reads pending first, then confirmed
   - A pending value equal to the confirmed one is dropped, so no-op edits
     never reach a diff

2. DEPENDENCY PROPAGATION:
   - Every ``set`` (even a no-op) re-evaluates the fields that depend on the
     mutated field, using the registry's dependency index
   - A value dependent whose current value is no longer a legal choice is
     reset to its first legal choice, through ``set``, so resets cascade
   - A visibility dependent that becomes hidden loses its pending value

3. PERSISTENCE:
   - ``save()`` creates (no id yet) or updates (id known) the bug, sending
     only the pending overlay, with multivalue fields as add/remove deltas
   - ``update()`` re-fetches the confirmed state
   - At most one save and one fetch are in flight per instance; repeated
     calls return the in-flight handle

Example Usage:
```python
bug = Bug.draft(registry, transport, product="Core", summary="Crash on save")
bug.choices_updated(lambda bug, parent, field, choices: redraw(field, choices))
bug.set("component", "Editor")
bug.save().done(lambda bug: print(bug.id)).fail(lambda bug, error: print(error.message))
```
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from bayot.bug.diff import (
    build_create_params,
    build_update_params,
    empty_value,
    is_empty,
    merge_changes,
    normalize_value,
    values_equal,
)
from bayot.errors import RemoteError
from bayot.fields.models import FieldDescriptor
from bayot.fields.registry import FieldRegistry
from bayot.rpc.call import RpcCall
from bayot.rpc.callbacks import Callbacks
from bayot.rpc.deferred import Deferred
from bayot.rpc.transport import RpcTransport


def _match_keys(value: Any) -> Set[str]:
    """String keys of a field value, for membership tests against value names."""
    if value is None or value == "":
        return set()
    if isinstance(value, (list, tuple, set)):
        return {str(v) for v in value}
    return {str(value)}


class Bug:
    """
    One bug record being viewed, edited or created.

    Args:
        registry: Field registry shared by all bugs
        transport: Transport used for save and fetch calls
        data: Optional server record; its ``id`` becomes the bug id and its
            known fields the confirmed state

    Events (subscribe with the method of the same name, which returns the bug):
        changed(bug, field, value): the effective value of a field changed
        choices_updated(bug, parent, field, choices): a value dependent of
            ``parent`` was re-evaluated
        visibility_updated(bug, parent, field, visible): a visibility
            dependent of ``parent`` was re-evaluated
    """
    _logger = logging.getLogger("Bug")

    def __init__(self, registry: FieldRegistry, transport: RpcTransport, data: Optional[Dict[str, Any]] = None):
        self.registry = registry
        self.transport = transport
        self.id: Any = None
        self._confirmed: Dict[str, Any] = {}
        self._pending: Dict[str, Any] = {}
        self._visible: Dict[str, bool] = {}
        self._save_op: Optional[Deferred] = None
        self._update_op: Optional[Deferred] = None

        self._changed_cb = Callbacks("Bug.changed")
        self._choices_cb = Callbacks("Bug.choices_updated")
        self._visibility_cb = Callbacks("Bug.visibility_updated")

        self._confirmed = self._empty_confirmed()
        if data:
            self.id, self._confirmed = self._read_record(data)
        self._snapshot_visibility()

    @classmethod
    def draft(cls, registry: FieldRegistry, transport: RpcTransport, **initial: Any) -> "Bug":
        """
        Start a new, not yet created bug.

        Confirmed state is seeded with field defaults, parents before
        dependents, and the ``initial`` values are then set as pending edits.
        """
        bug = cls(registry, transport)
        for name in registry.names():
            default = bug.default_value(name)
            if default is not None:
                bug._confirmed[name] = normalize_value(registry.resolve(name), default)
        bug._snapshot_visibility()
        for field, value in initial.items():
            bug.set(field, value)
        bug._logger.debug(f"Draft bug with pending fields {sorted(bug._pending)}")
        return bug

    @classmethod
    def get(cls, registry: FieldRegistry, transport: RpcTransport, bug_id: Any) -> Deferred:
        """Fetch an existing bug. The returned handle resolves with the Bug."""
        return cls(registry, transport, {"id": bug_id}).update()

    ##############################
    # Events
    ##############################

    def changed(self, callback: Callable[..., Any]) -> "Bug":
        self._changed_cb.add(callback)
        return self

    def choices_updated(self, callback: Callable[..., Any]) -> "Bug":
        self._choices_cb.add(callback)
        return self

    def visibility_updated(self, callback: Callable[..., Any]) -> "Bug":
        self._visibility_cb.add(callback)
        return self

    def unsubscribe(self, callback: Callable[..., Any]) -> bool:
        removed = False
        for callbacks in (self._changed_cb, self._choices_cb, self._visibility_cb):
            removed = callbacks.remove(callback) or removed
        return removed

    ##############################
    # State access
    ##############################

    @property
    def confirmed(self) -> Dict[str, Any]:
        return {name: _copy(value) for name, value in self._confirmed.items()}

    @property
    def pending(self) -> Dict[str, Any]:
        return {name: _copy(value) for name, value in self._pending.items()}

    @property
    def is_dirty(self) -> bool:
        """True when a save would send something: pending edits on hidden fields do not count."""
        return bool(self._diff_source())

    @property
    def is_new(self) -> bool:
        return self.id is None

    def pending_fields(self) -> List[str]:
        return list(self._pending)

    def value(self, field: str) -> Any:
        """Pending value if there is one, confirmed value otherwise."""
        name = self.registry.resolve(field).name
        if name in self._pending:
            return _copy(self._pending[name])
        return _copy(self._confirmed[name])

    def choices(self, field: str) -> List[str]:
        """
        Legal value names for ``field`` in the current state.

        Workflow fields offer their confirmed value followed by the
        transitions allowed from it. Other fields offer the values legal for
        the current value of their ``value_field`` (all values when it has
        none or is empty), ordered by sort key then name.
        """
        desc = self.registry.resolve(field)
        if desc.is_workflow:
            return self._workflow_choices(desc)

        candidates = list(desc.values)
        if desc.value_field:
            keys = _match_keys(self.value(desc.value_field))
            if keys:
                candidates = [v for v in candidates if keys.intersection(v.visibility_values)]
        candidates.sort(key=lambda v: (v.sort_key, v.name))
        return [v.name for v in candidates]

    def _workflow_choices(self, desc: FieldDescriptor) -> List[str]:
        # Transitions are gated by the confirmed value, not a tentative edit
        current = self._confirmed.get(desc.name)
        result: List[str] = []
        if not is_empty(current):
            result.append(current)
        entry = desc.get_value("" if current is None else current)
        for name in (entry.can_change_to or []) if entry is not None else []:
            if name not in result:
                result.append(name)
        return result

    def is_visible(self, field: str) -> bool:
        desc = self.registry.resolve(field)
        if not desc.visibility_field:
            return True
        keys = _match_keys(self.value(desc.visibility_field))
        return bool(keys.intersection(desc.visibility_values))

    def is_mandatory(self, field: str) -> bool:
        return self.registry.is_mandatory(field, self)

    def default_value(self, field: str) -> Any:
        """
        The legal value flagged as default; failing that, the only legal
        choice of a mandatory field; otherwise None.

        A flagged default that the current value_field does not allow is
        skipped, so a default never lies outside ``choices(field)``.
        """
        desc = self.registry.resolve(field)
        choices = self.choices(desc.name)
        legal = {v.name for v in desc.values} if desc.is_workflow else set(choices)
        for value in desc.values:
            if value.is_default and value.name in legal:
                return value.name
        if desc.is_mandatory and len(choices) == 1:
            return choices[0]
        return None

    ##############################
    # Mutation
    ##############################

    def set(self, field: str, value: Any) -> None:
        """
        Stage a new value for ``field``.

        Writes to immutable fields are ignored. A value equal to the
        confirmed one clears the pending edit instead. A ``changed`` event
        fires whenever the effective value changes, including when a
        previous edit is reverted. Dependents are re-evaluated in every case.

        Raises:
            UnknownFieldError: If ``field`` is not in the registry
        """
        desc = self.registry.resolve(field)
        name = desc.name
        if desc.immutable:
            self._logger.debug(f"Ignoring write to immutable field {name}")
            return

        value = normalize_value(desc, value)
        before = self.value(name)
        if values_equal(desc, value, self._confirmed[name]):
            self._pending.pop(name, None)
        else:
            self._pending[name] = value

        after = self.value(name)
        if not values_equal(desc, before, after):
            self._logger.debug(f"Bug({self.id}).{name} -> {after!r}")
            self._changed_cb.fire(self, name, after)
        self._propagate(name)

    def add(self, field: str, value: Any) -> None:
        """Add ``value`` to a multivalue field; same as ``set`` otherwise."""
        desc = self.registry.resolve(field)
        if not desc.multivalue:
            self.set(desc.name, value)
            return
        current = self.value(desc.name)
        keys = {str(v) for v in current}
        for item in normalize_value(desc, value):
            if str(item) not in keys:
                current.append(item)
                keys.add(str(item))
        self.set(desc.name, current)

    def remove(self, field: str, value: Any) -> None:
        """
        Remove ``value`` from a multivalue field. A single valued field is
        cleared only if it currently holds ``value``.
        """
        desc = self.registry.resolve(field)
        if not desc.multivalue:
            if self.value(desc.name) == normalize_value(desc, value):
                self.set(desc.name, None)
            return
        drop = {str(v) for v in normalize_value(desc, value)}
        self.set(desc.name, [v for v in self.value(desc.name) if str(v) not in drop])

    def revert(self) -> None:
        """Drop every pending edit."""
        for name in list(self._pending):
            if name in self._pending:
                self.set(name, self._confirmed[name])

    ##############################
    # Dependency propagation
    ##############################

    def _propagate(self, name: str) -> None:
        for dependent in self.registry.choice_dependents(name):
            choices = self.choices(dependent)
            self._enforce_choice(dependent, choices)
            self._choices_cb.fire(self, name, dependent, choices)

        for dependent in self.registry.visibility_dependents(name):
            visible = self.is_visible(dependent)
            was_visible = self._visible.get(dependent, True)
            self._visible[dependent] = visible
            cleared = False
            if was_visible and not visible and dependent in self._pending:
                # Hidden fields must not contribute to a diff
                before = self.value(dependent)
                del self._pending[dependent]
                after = self.value(dependent)
                cleared = True
                if not values_equal(self.registry.resolve(dependent), before, after):
                    self._changed_cb.fire(self, dependent, after)
            self._visibility_cb.fire(self, name, dependent, visible)
            if cleared:
                self._propagate(dependent)

    def _enforce_choice(self, field: str, choices: List[str]) -> None:
        desc = self.registry.resolve(field)
        current = self.value(field)
        if desc.multivalue:
            legal = set(choices)
            kept = [v for v in current if str(v) in legal]
            if len(kept) != len(current):
                self.set(field, kept)
        elif current not in choices:
            replacement = choices[0] if choices else None
            if replacement != current:
                self._logger.debug(f"Resetting {field} from {current!r} to {replacement!r}")
                self.set(field, replacement)

    def _snapshot_visibility(self) -> None:
        self._visible = {
            desc.name: self.is_visible(desc.name)
            for desc in self.registry
            if desc.visibility_field
        }

    ##############################
    # Diffs
    ##############################

    def _diff_source(self) -> Dict[str, Any]:
        return {name: value for name, value in self._pending.items() if self.is_visible(name)}

    def build_create_params(self) -> Dict[str, Any]:
        """
        Create parameters: the pending edits, plus the confirmed defaults of
        visible mandatory fields the caller did not touch.
        """
        values = {}
        for desc in self.registry:
            if desc.is_mandatory and desc.name not in self._pending and self.is_visible(desc.name):
                if not is_empty(self._confirmed[desc.name]):
                    values[desc.name] = self._confirmed[desc.name]
        values.update(self._diff_source())
        return build_create_params(self.registry, values)

    def build_update_params(self) -> Dict[str, Any]:
        return build_update_params(self.registry, self.id, self._confirmed, self._diff_source())

    ##############################
    # Persistence
    ##############################

    def save(self) -> Deferred:
        """
        Persist the pending edits.

        Returns a Deferred that resolves with the bug, or rejects with
        ``(bug, RemoteError)``. Pending edits are kept on failure. Calling
        ``save()`` again while a save is in flight returns the same handle.

        Edits on hidden fields are not sent; when nothing visible is pending
        the handle resolves at once without a remote call. After a create,
        edits the create call cannot carry (the comment) stay pending and go
        out with the next save.
        """
        if self._save_op is not None:
            return self._save_op

        deferred = Deferred(f"Bug({self.id}).save")
        if not self._diff_source():
            self._logger.debug(f"Bug({self.id}): nothing to save")
            deferred.resolve(self)
            return deferred

        if self.id is None:
            params = self.build_create_params()
            call = RpcCall(self.transport, "Bug", "create", params, immediate=False)
        else:
            params = self.build_update_params()
            call = RpcCall(self.transport, "Bug", "update", params, immediate=False)
        sent = {name: _copy(value) for name, value in self._pending.items() if name in params}
        created = self.id is None

        call.done(lambda result: self._on_saved(result, sent, created, deferred))
        call.fail(lambda error: self._on_failed(error, deferred, "_save_op"))
        self._save_op = deferred
        call.start()
        return deferred

    def update(self) -> Deferred:
        """
        Re-fetch the confirmed state from the service.

        Pending edits survive unless they now equal the confirmed value.
        Calling ``update()`` again while a fetch is in flight returns the
        same handle.

        Raises:
            ValueError: If the bug has not been created yet
        """
        if self._update_op is not None:
            return self._update_op
        if self.id is None:
            raise ValueError("Cannot fetch a bug that has not been created")

        deferred = Deferred(f"Bug({self.id}).update")
        call = RpcCall(self.transport, "Bug", "get", {"ids": [self.id]}, immediate=False)
        call.done(lambda result: self._on_fetched(result, deferred))
        call.fail(lambda error: self._on_failed(error, deferred, "_update_op"))
        self._update_op = deferred
        call.start()
        return deferred

    def _on_saved(self, result: Any, sent: Dict[str, Any], created: bool, deferred: Deferred) -> None:
        self._save_op = None
        before = {name: self.value(name) for name in self._confirmed}
        bug_id = self.id
        confirmed = dict(self._confirmed)
        try:
            if created:
                bug_id = result["id"]
                for name, value in sent.items():
                    if not self.registry.resolve(name).is_comment:
                        confirmed[name] = value
            else:
                self._merge_update_result(result, sent, confirmed)
        except (KeyError, TypeError, ValueError) as e:
            self._logger.error(f"Bug({self.id}): unexpected save response {result!r}: {e}")
            deferred.reject(self, RemoteError(f"Unexpected save response: {e}"))
            return
        self.id, self._confirmed = bug_id, confirmed

        for name, value in sent.items():
            if name in self._pending and values_equal(self.registry.resolve(name), self._pending[name], value):
                del self._pending[name]
        if created and self._pending:
            # Not creatable (e.g. a comment): goes out with the next update
            self._logger.info(f"Bug({self.id}) created; kept pending for update: {sorted(self._pending)}")
        self._settle(before)
        self._logger.info(f"Bug({self.id}) saved: {sorted(sent)}")
        deferred.resolve(self)

    def _merge_update_result(self, result: Dict[str, Any], sent: Dict[str, Any], confirmed: Dict[str, Any]) -> None:
        changes: Dict[str, Any] = {}
        for entry in result.get("bugs", []):
            if entry.get("id") in (None, self.id):
                changes.update(entry.get("changes") or {})
        merged = merge_changes(self.registry, confirmed, changes)
        # Accepted without a reported change: the sent value is now confirmed
        for name, value in sent.items():
            if name not in merged and not self.registry.resolve(name).is_comment:
                confirmed[name] = value

    def _on_fetched(self, result: Any, deferred: Deferred) -> None:
        self._update_op = None
        bugs = result.get("bugs") if isinstance(result, dict) else None
        if not bugs:
            self._logger.error(f"Bug({self.id}): fetch returned no record")
            deferred.reject(self, RemoteError(f"Bug {self.id} was not returned"))
            return

        before = {name: self.value(name) for name in self._confirmed}
        try:
            bug_id, confirmed = self._read_record(bugs[0])
        except (TypeError, ValueError) as e:
            self._logger.error(f"Bug({self.id}): malformed record: {e}")
            deferred.reject(self, RemoteError(f"Malformed bug record: {e}"))
            return
        self.id, self._confirmed = bug_id, confirmed
        self._settle(before)
        self._logger.info(f"Bug({self.id}) fetched")
        deferred.resolve(self)

    def _on_failed(self, error: RemoteError, deferred: Deferred, guard: str) -> None:
        setattr(self, guard, None)
        deferred.reject(self, error)

    def _settle(self, before: Dict[str, Any]) -> None:
        """Restore the pending invariant and report effective changes after confirmed state moved."""
        for name in list(self._pending):
            if values_equal(self.registry.resolve(name), self._pending[name], self._confirmed[name]):
                del self._pending[name]
        moved = [
            name for name in self.registry.names()
            if not values_equal(self.registry.resolve(name), before.get(name), self.value(name))
        ]
        for name in moved:
            self._changed_cb.fire(self, name, self.value(name))
        # Propagate against the visibility seen before the server update, so
        # fields it hides lose their pending value
        for name in moved:
            self._propagate(name)
        self._snapshot_visibility()

    ##############################
    # Record loading
    ##############################

    def _empty_confirmed(self) -> Dict[str, Any]:
        return {desc.name: empty_value(desc) for desc in self.registry}

    def _read_record(self, record: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        """
        Parse a server record into ``(id, confirmed)`` without touching the bug.

        Raises:
            ValueError: If a value cannot be normalized (e.g. a bad bug id)
        """
        bug_id = self.id
        confirmed = self._empty_confirmed()
        for key, value in record.items():
            if key == "id":
                bug_id = value
                continue
            if key not in self.registry:
                self._logger.debug(f"Ignoring unknown record key {key!r}")
                continue
            desc = self.registry.resolve(key)
            confirmed[desc.name] = normalize_value(desc, value)
        return bug_id, confirmed

    def __repr__(self) -> str:
        return f"Bug(id={self.id!r}, pending={sorted(self._pending)})"


def _copy(value: Any) -> Any:
    return list(value) if isinstance(value, list) else value

