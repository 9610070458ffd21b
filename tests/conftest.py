# conftest.py
"""
Common fixtures: a bug field table, its registry, and a scripted in-memory
transport that records every request.
"""
import pytest
from typing import Any, Callable, Dict, List, Optional, Tuple

from bayot.fields.models import FieldDescriptor, FieldType, FieldValue
from bayot.fields.registry import FieldRegistry
from bayot.bug.entity import Bug


# Custom test markers
def pytest_configure(config):
    """Configure custom markers."""
    markers = [
        "slow: marks tests as slow",
        "async_test: marks async tests",
        "integration: marks tests that go through an HTTP transport",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# ========================================================================
# Transport double
# ========================================================================

class ScriptedTransport:
    """
    Answers requests from a per-method FIFO script.

    ``respond``/``fail`` queue outcomes for a ``Namespace.method`` name.
    With ``hold = True`` requests are recorded but not answered until
    ``release()``, which lets tests observe in-flight state.
    """

    def __init__(self):
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.hold = False
        self._script: Dict[str, List[Tuple[str, Any]]] = {}
        self._held: List[Tuple[str, Callable, Callable]] = []

    def respond(self, name: str, result: Any = None) -> "ScriptedTransport":
        self._script.setdefault(name, []).append(("success", {"result": result, "error": None}))
        return self

    def fail(self, name: str, error: Any) -> "ScriptedTransport":
        payload = {"result": None, "error": error} if isinstance(error, dict) else error
        self._script.setdefault(name, []).append(("error", payload))
        return self

    def request(self, namespace, method, params, on_success, on_error) -> None:
        name = f"{namespace}.{method}"
        self.requests.append((name, params))
        if self.hold:
            self._held.append((name, on_success, on_error))
            return
        self._answer(name, on_success, on_error)

    def release(self) -> None:
        self.hold = False
        held, self._held = self._held, []
        for name, on_success, on_error in held:
            self._answer(name, on_success, on_error)

    def calls(self, name: str) -> List[Dict[str, Any]]:
        return [params for n, params in self.requests if n == name]

    def _answer(self, name: str, on_success: Callable, on_error: Callable) -> None:
        queue = self._script.get(name)
        if not queue:
            on_error(f"No scripted response for {name}")
            return
        kind, payload = queue.pop(0)
        if kind == "success":
            on_success(payload)
        else:
            on_error(payload)


# ========================================================================
# Field table
# ========================================================================

def build_bug_fields() -> List[FieldDescriptor]:
    """
    A small but complete schema:
    - component and version depend on product for their choices
    - cf_browser is only shown for the Widgets component
    - resolution is only shown for closed-ish statuses
    - status is a workflow field
    """
    return [
        FieldDescriptor(
            name="product", type=FieldType.SELECT, is_mandatory=True,
            values=[FieldValue(name="Core"), FieldValue(name="UI")],
        ),
        FieldDescriptor(
            name="component", type=FieldType.SELECT, is_mandatory=True, value_field="product",
            values=[
                FieldValue(name="Editor", sort_key=10, visibility_values=["Core"]),
                FieldValue(name="Engine", sort_key=5, visibility_values=["Core"]),
                FieldValue(name="Widgets", visibility_values=["UI"]),
                FieldValue(name="Toolkit", visibility_values=["UI"]),
            ],
        ),
        FieldDescriptor(
            name="version", type=FieldType.SELECT, is_mandatory=True, value_field="product",
            values=[
                FieldValue(name="1.0", visibility_values=["Core"]),
                FieldValue(name="2.0", visibility_values=["UI"]),
            ],
        ),
        FieldDescriptor(name="summary", internal_name="short_desc", display_name="Summary", is_mandatory=True),
        FieldDescriptor(
            name="status", internal_name="bug_status", type=FieldType.SELECT,
            values=[
                FieldValue(name="", can_change_to=["NEW", "ASSIGNED"]),
                FieldValue(name="NEW", sort_key=1, can_change_to=["ASSIGNED", "RESOLVED"]),
                FieldValue(name="ASSIGNED", sort_key=2, can_change_to=["RESOLVED"]),
                FieldValue(name="RESOLVED", sort_key=3, can_change_to=["REOPENED", "VERIFIED"]),
                FieldValue(name="VERIFIED", sort_key=4, can_change_to=["CLOSED"]),
                FieldValue(name="CLOSED", sort_key=5, can_change_to=[]),
                FieldValue(name="REOPENED", sort_key=6, can_change_to=["ASSIGNED", "RESOLVED"]),
            ],
        ),
        FieldDescriptor(
            name="resolution", type=FieldType.SELECT, visibility_field="status",
            visibility_values=["RESOLVED", "VERIFIED", "CLOSED"],
            values=[FieldValue(name="WONTFIX"), FieldValue(name="FIXED")],
        ),
        FieldDescriptor(
            name="severity", internal_name="bug_severity", type=FieldType.SELECT,
            values=[
                FieldValue(name="minor", sort_key=3),
                FieldValue(name="critical", sort_key=1),
                FieldValue(name="normal", sort_key=2, is_default=True),
            ],
        ),
        FieldDescriptor(name="cc", type=FieldType.USER, multivalue=True),
        FieldDescriptor(name="blocked", type=FieldType.BUGID, multivalue=True),
        FieldDescriptor(name="keywords", type=FieldType.KEYWORDS),
        FieldDescriptor(
            name="cf_browser", display_name="Browser", type=FieldType.SELECT,
            visibility_field="component", visibility_values=["Widgets"],
            values=[FieldValue(name="Firefox"), FieldValue(name="Chrome")],
        ),
        FieldDescriptor(name="comment", type=FieldType.TEXT, creatable=False, is_comment=True),
        FieldDescriptor(name="creation_time", type=FieldType.DATE, immutable=True, creatable=False),
    ]


@pytest.fixture
def bug_fields() -> List[FieldDescriptor]:
    return build_bug_fields()


@pytest.fixture
def registry(bug_fields) -> FieldRegistry:
    return FieldRegistry(bug_fields)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def make_bug(registry, transport) -> Callable[..., Bug]:
    """Build a Bug from a server record against the shared registry and transport."""
    def factory(data: Optional[Dict[str, Any]] = None) -> Bug:
        return Bug(registry, transport, data)
    return factory


@pytest.fixture
def recorder() -> Callable[[str], Callable[..., None]]:
    """
    Returns a function producing event listeners that append
    ``(event_name, *args)`` tuples to ``recorder.events``.
    """
    events: List[Tuple[Any, ...]] = []

    def listen(name: str) -> Callable[..., None]:
        def listener(*args: Any) -> None:
            events.append((name,) + args[1:])  # drop the entity argument
        return listener

    listen.events = events
    return listen
