"""
Tests for saving and fetching bugs.
"""
import pytest

from bayot.bug.entity import Bug
from bayot.errors import NETWORK_ERROR_CODE, RemoteError
from bayot.fields.models import FieldDescriptor, FieldType, FieldValue
from bayot.fields.registry import FieldRegistry
from bayot.rpc.deferred import DeferredState


def update_result(bug_id, **changes):
    return {"bugs": [{"id": bug_id, "changes": changes}]}


class TestSave:
    """Update of an existing bug."""

    def test_nothing_to_save(self, make_bug, transport):
        bug = make_bug({"id": 7, "summary": "s"})

        deferred = bug.save()

        assert deferred.state == DeferredState.resolved
        assert deferred.value == (bug,)
        assert transport.requests == []

    def test_update_sends_deltas_and_merges_result(self, make_bug, transport):
        bug = make_bug({"id": 7, "cc": ["a", "b"], "severity": "normal", "status": "NEW"})
        bug.set("cc", ["b", "c"])
        bug.set("severity", "minor")
        bug.set("comment", "note")
        transport.respond("Bug.update", update_result(
            7,
            cc={"added": "c", "removed": "a"},
            bug_severity={"added": "minor", "removed": "normal"},
        ))

        saved = []
        deferred = bug.save().done(saved.append)

        assert transport.calls("Bug.update") == [{
            "ids": [7],
            "cc": {"add": ["c"], "remove": ["a"]},
            "severity": "minor",
            "comment": {"body": "note"},
        }]
        assert deferred.state == DeferredState.resolved
        assert saved == [bug]
        assert bug.pending == {}
        assert bug.confirmed["cc"] == ["b", "c"]
        assert bug.confirmed["severity"] == "minor"
        assert bug.value("comment") is None

    def test_accepted_values_without_reported_change_are_confirmed(self, make_bug, transport):
        bug = make_bug({"id": 7, "summary": "old"})
        bug.set("summary", "new")
        transport.respond("Bug.update", update_result(7))

        bug.save()

        assert bug.confirmed["summary"] == "new"
        assert not bug.is_dirty

    def test_failure_keeps_pending(self, make_bug, transport):
        bug = make_bug({"id": 7, "summary": "old"})
        bug.set("summary", "new")
        transport.fail("Bug.update", {"code": 51, "message": "Invalid component"})

        failures = []
        deferred = bug.save().fail(lambda failed, error: failures.append((failed, error)))

        assert deferred.state == DeferredState.rejected
        assert failures[0][0] is bug
        assert failures[0][1].code == 51
        assert bug.pending == {"summary": "new"}
        assert bug.confirmed["summary"] == "old"

        # The guard is released: a retry issues a new request
        assert bug.save() is not deferred
        assert len(transport.calls("Bug.update")) == 2

    def test_edit_on_hidden_field_is_not_saved(self, make_bug, transport):
        bug = make_bug({"id": 1, "status": "NEW"})
        bug.set("resolution", "FIXED")

        assert bug.pending == {"resolution": "FIXED"}
        assert not bug.is_dirty

        first = bug.save()
        second = bug.save()

        assert first.state == DeferredState.resolved
        assert second.state == DeferredState.resolved
        assert transport.requests == []

    def test_hidden_edit_is_sent_once_the_field_shows(self, make_bug):
        bug = make_bug({"id": 1, "status": "NEW"})
        bug.set("resolution", "FIXED")

        bug.set("status", "RESOLVED")

        assert bug.is_dirty
        assert bug.build_update_params() == {"ids": [1], "status": "RESOLVED", "resolution": "FIXED"}

    def test_malformed_update_result_keeps_confirmed_state(self, make_bug, transport):
        bug = make_bug({"id": 7, "cc": ["a"], "blocked": [5], "summary": "old"})
        before = bug.confirmed
        bug.set("summary", "new")
        bug.add("blocked", 6)
        transport.respond("Bug.update", update_result(
            7,
            cc={"added": "b", "removed": ""},
            blocked={"added": "not-an-id", "removed": ""},
        ))

        deferred = bug.save()

        assert deferred.state == DeferredState.rejected
        assert isinstance(deferred.reason[1], RemoteError)
        assert bug.confirmed == before
        assert bug.pending == {"summary": "new", "blocked": [5, 6]}

    def test_network_failure(self, make_bug, transport):
        bug = make_bug({"id": 7})
        bug.set("summary", "new")
        transport.fail("Bug.update", "Connection refused")

        deferred = bug.save()

        assert deferred.reason[1].code == NETWORK_ERROR_CODE

    def test_in_flight_save_is_shared(self, make_bug, transport):
        bug = make_bug({"id": 7, "summary": "old"})
        bug.set("summary", "new")
        transport.hold = True

        first = bug.save()
        second = bug.save()

        assert first is second
        assert len(transport.calls("Bug.update")) == 1
        assert first.state == DeferredState.pending

        transport.respond("Bug.update", update_result(7, short_desc={"added": "new", "removed": "old"}))
        transport.release()

        assert first.state == DeferredState.resolved
        assert bug.confirmed["summary"] == "new"
        assert bug.save() is not first

    def test_edits_made_during_save_stay_pending(self, make_bug, transport):
        bug = make_bug({"id": 7, "severity": "normal"})
        bug.set("severity", "minor")
        transport.hold = True
        deferred = bug.save()

        bug.set("severity", "critical")
        transport.respond("Bug.update", update_result(7, bug_severity={"added": "minor", "removed": "normal"}))
        transport.release()

        assert deferred.state == DeferredState.resolved
        assert bug.confirmed["severity"] == "minor"
        assert bug.pending == {"severity": "critical"}


class TestCreate:
    """Creation of a new bug."""

    def test_create(self, registry, transport):
        bug = Bug.draft(registry, transport, product="Core", summary="Crash")
        transport.respond("Bug.create", {"id": 42})

        deferred = bug.save()

        assert transport.calls("Bug.create") == [{
            "product": "Core",
            "component": "Engine",
            "version": "1.0",
            "summary": "Crash",
        }]
        assert deferred.state == DeferredState.resolved
        assert bug.id == 42
        assert not bug.is_new
        assert bug.pending == {}
        assert bug.confirmed["component"] == "Engine"

    def test_create_sends_auto_filled_mandatory_fields(self, transport):
        registry = FieldRegistry([
            FieldDescriptor(name="product", type=FieldType.SELECT, is_mandatory=True, values=[FieldValue(name="Core")]),
            FieldDescriptor(
                name="component", type=FieldType.SELECT, is_mandatory=True, value_field="product",
                values=[FieldValue(name="Engine", visibility_values=["Core"])],
            ),
            FieldDescriptor(name="summary", is_mandatory=True),
        ])
        bug = Bug.draft(registry, transport, summary="Crash")
        assert bug.pending == {"summary": "Crash"}

        transport.respond("Bug.create", {"id": 1})
        bug.save()

        assert transport.calls("Bug.create") == [{"product": "Core", "component": "Engine", "summary": "Crash"}]
        assert bug.confirmed["product"] == "Core"

    def test_comment_on_a_draft_goes_out_with_the_next_update(self, registry, transport):
        bug = Bug.draft(registry, transport, product="Core", summary="Crash", comment="Seen twice")
        transport.respond("Bug.create", {"id": 42})

        bug.save()

        assert "comment" not in transport.calls("Bug.create")[0]
        assert bug.id == 42
        assert bug.pending == {"comment": "Seen twice"}
        assert bug.is_dirty

        transport.respond("Bug.update", update_result(42))
        bug.save()

        assert transport.calls("Bug.update") == [{"ids": [42], "comment": {"body": "Seen twice"}}]
        assert not bug.is_dirty
        assert bug.value("comment") is None

    def test_malformed_create_response(self, registry, transport):
        bug = Bug.draft(registry, transport, summary="Crash")
        transport.respond("Bug.create", {})

        deferred = bug.save()

        assert deferred.state == DeferredState.rejected
        assert isinstance(deferred.reason[1], RemoteError)
        assert bug.is_new
        assert bug.pending == {"summary": "Crash"}


class TestFetch:
    """Refreshing confirmed state."""

    def test_update_reloads_confirmed_state(self, make_bug, transport, recorder):
        bug = make_bug({"id": 9, "summary": "old"})
        bug.set("summary", "mine")
        bug.changed(recorder("changed"))
        transport.respond("Bug.get", {"bugs": [
            {"id": 9, "short_desc": "server", "bug_status": "NEW", "last_change_time": "2024-01-01"},
        ]})

        deferred = bug.update()

        assert transport.calls("Bug.get") == [{"ids": [9]}]
        assert deferred.state == DeferredState.resolved
        assert bug.confirmed["summary"] == "server"
        assert bug.confirmed["status"] == "NEW"
        assert bug.pending == {"summary": "mine"}
        assert recorder.events == [("changed", "status", "NEW")]

    def test_pending_equal_to_fetched_value_is_dropped(self, make_bug, transport):
        bug = make_bug({"id": 9, "summary": "old"})
        bug.set("summary", "server")
        transport.respond("Bug.get", {"bugs": [{"id": 9, "short_desc": "server"}]})

        bug.update()

        assert not bug.is_dirty

    def test_in_flight_fetch_is_shared(self, make_bug, transport):
        bug = make_bug({"id": 9})
        transport.hold = True

        first = bug.update()

        assert bug.update() is first
        assert len(transport.calls("Bug.get")) == 1

    def test_malformed_record_keeps_confirmed_state(self, make_bug, transport):
        bug = make_bug({"id": 1, "product": "Core", "component": "Editor", "blocked": [5]})
        before = bug.confirmed
        transport.respond("Bug.get", {"bugs": [{"id": 1, "product": "UI", "blocked": ["not-an-id"]}]})

        deferred = bug.update()

        assert deferred.state == DeferredState.rejected
        assert isinstance(deferred.reason[1], RemoteError)
        assert bug.confirmed == before
        assert bug.value("component") == "Editor"
        assert bug.value("blocked") == [5]

    def test_fetch_that_hides_a_field_clears_its_edit(self, make_bug, transport, recorder):
        bug = make_bug({"id": 1, "status": "RESOLVED"})
        bug.set("resolution", "FIXED")
        bug.changed(recorder("changed"))
        bug.visibility_updated(recorder("visibility"))
        transport.respond("Bug.get", {"bugs": [{"id": 1, "bug_status": "REOPENED"}]})

        bug.update()

        assert not bug.is_visible("resolution")
        assert bug.pending == {}
        assert recorder.events == [
            ("changed", "status", "REOPENED"),
            ("changed", "resolution", None),
            ("visibility", "status", "resolution", False),
        ]

    def test_missing_record(self, make_bug, transport):
        transport.respond("Bug.get", {"bugs": []})

        deferred = make_bug({"id": 9}).update()

        assert deferred.state == DeferredState.rejected
        assert isinstance(deferred.reason[1], RemoteError)

    def test_draft_cannot_be_fetched(self, registry, transport):
        with pytest.raises(ValueError):
            Bug.draft(registry, transport).update()

    def test_get(self, registry, transport):
        transport.respond("Bug.get", {"bugs": [{"id": 9, "short_desc": "Crash"}]})

        loaded = []
        Bug.get(registry, transport, 9).done(loaded.append)

        assert loaded[0].id == 9
        assert loaded[0].value("summary") == "Crash"


class TestAwaitingPersistence:
    """save() and update() handles are awaitable."""

    @pytest.mark.asyncio
    async def test_await_save(self, make_bug, transport):
        bug = make_bug({"id": 3})
        bug.set("summary", "new")
        transport.respond("Bug.update", update_result(3))

        assert await bug.save() is bug

    @pytest.mark.asyncio
    async def test_await_failed_save(self, make_bug, transport):
        bug = make_bug({"id": 3})
        bug.set("summary", "new")
        transport.fail("Bug.update", {"code": 32000, "message": "Denied"})

        with pytest.raises(RemoteError):
            await bug.save()
