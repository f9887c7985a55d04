import pytest

from common.events import AssistantDeltaEvent, EventEmitter, MessagesChangedEvent
from conftest import make_message
from threadline.errors import ErrorKind, RunError, StreamError, TransportError
from threadline.reconciler import MessageReconciler
from threadline.state import ConversationState


def _reconciler():
    events = []
    return MessageReconciler(EventEmitter(events.append)), events


def test_begin_appends_user_message_and_placeholder():
    reconciler, events = _reconciler()
    state = ConversationState(session_id="s1")

    placeholder = reconciler.begin(state, "hello")

    assert [m.role for m in state.messages] == ["user", "assistant"]
    assert state.messages[0].text == "hello"
    assert placeholder.content == []
    assert state.pending_message_id == placeholder.id
    assert state.is_busy
    assert isinstance(events[-1], MessagesChangedEvent)


def test_deltas_accumulate_in_order():
    reconciler, events = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hi")

    for fragment in ["Hel", "lo", " world"]:
        reconciler.append_delta(state, fragment)

    texts = [e.text for e in events if isinstance(e, AssistantDeltaEvent)]
    assert texts == ["Hel", "Hello", "Hello world"]
    assert state.pending_message().content == ["Hel", "lo", " world"]


def test_snapshot_is_detached_from_live_state():
    reconciler, events = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hi")
    snapshot = events[-1].messages

    reconciler.append_delta(state, "later")

    assert snapshot[-1].content == []


def test_append_delta_without_pending_is_dropped():
    reconciler, events = _reconciler()
    state = ConversationState(session_id="s1")

    assert reconciler.append_delta(state, "orphan") == ""
    assert events == []


def test_finalize_replaces_local_messages():
    reconciler, _ = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hello")
    remote = [make_message("user", "hello", 0), make_message("assistant", "Hello world", 1)]

    reconciler.finalize(state, remote)

    assert [m.text for m in state.messages] == ["hello", "Hello world"]
    assert not state.is_busy


def test_finalize_without_assistant_reply_raises_run_error():
    reconciler, _ = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hello")

    with pytest.raises(RunError) as exc:
        reconciler.finalize(state, [make_message("user", "hello", 0)])

    assert exc.value.status == "completed"
    assert state.is_busy


def test_inject_error_replaces_placeholder_and_keeps_partial_text():
    reconciler, _ = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hello")
    reconciler.append_delta(state, "Part")

    message = reconciler.inject_error(state, StreamError("Streaming error: {}"))

    assert len(state.messages) == 2
    assert state.messages[-1] is message
    assert message.role == "assistant"
    assert message.text == "Part\n\nError: Streaming error: {}"
    assert message.error.kind is ErrorKind.STREAM
    assert not state.is_busy


def test_inject_error_wraps_unexpected_exceptions():
    reconciler, _ = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hello")

    message = reconciler.inject_error(state, ValueError("boom"))

    assert message.error.kind is ErrorKind.TRANSPORT
    assert "boom" in message.text


def test_inject_error_uses_user_facing_text_for_known_statuses():
    reconciler, _ = _reconciler()
    state = ConversationState(session_id="s1")
    reconciler.begin(state, "hello")

    message = reconciler.inject_error(state, TransportError("POST failed", status_code=429))

    assert message.text == "Error: Rate limit exceeded: Too many requests to the API."
    assert message.error.status_code == 429


def test_inject_error_appends_when_nothing_is_pending():
    reconciler, _ = _reconciler()
    state = ConversationState(session_id="s1", messages=[make_message("user", "hello", 0)])

    reconciler.inject_error(state, RunError("expired"))

    assert [m.role for m in state.messages] == ["user", "assistant"]
    assert state.messages[-1].error.run_status == "expired"
