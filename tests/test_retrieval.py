import pytest

from common.events import AssistantDeltaEvent, EventEmitter, RetrievalStateEvent
from conftest import MockBackend, RecordingSleep, make_message
from threadline.backends.base import Dispatch
from threadline.errors import RunError, StreamError, TransportError
from threadline.models import FeedOrder, RunStatus, Session, StreamEvent
from threadline.reconciler import MessageReconciler
from threadline.retrieval import RetrievalStrategySelector, order_chronologically
from threadline.state import ConversationState

FEED = [
    make_message("assistant", "Hello world", seconds=1, message_id="m2"),
    make_message("user", "hi", seconds=0, message_id="m1"),
]


def _delta(text):
    return StreamEvent(name="thread.message.delta", delta=text)


def _setup(backend, **kwargs):
    events = []
    emitter = EventEmitter(events.append)
    sleep = RecordingSleep()
    selector = RetrievalStrategySelector(
        backend, MessageReconciler(emitter), emitter=emitter, sleep=sleep, **kwargs
    )
    state = ConversationState(session_id="s1")
    selector.reconciler.begin(state, "hi")
    dispatch = Dispatch(session=Session(id="s1", thread_id="t1"), content="hi")
    return selector, state, dispatch, events, sleep


def _states(events):
    return [e.state for e in events if isinstance(e, RetrievalStateEvent)]


class TestOrderChronologically:
    def test_newest_first_feed_is_reversed(self):
        ordered = order_chronologically(FEED, FeedOrder.NEWEST_FIRST)
        assert [m.id for m in ordered] == ["m1", "m2"]

    def test_oldest_first_feed_is_kept(self):
        feed = list(reversed(FEED))
        ordered = order_chronologically(feed, FeedOrder.OLDEST_FIRST)
        assert [m.id for m in ordered] == ["m1", "m2"]

    def test_contradicted_assumption_uses_reverse(self):
        feed = list(reversed(FEED))
        ordered = order_chronologically(feed, FeedOrder.NEWEST_FIRST)
        assert [m.id for m in ordered] == ["m1", "m2"]

    def test_inconsistent_feed_is_sorted_by_timestamp(self):
        feed = [
            make_message("user", "b", seconds=2, message_id="b"),
            make_message("user", "a", seconds=0, message_id="a"),
            make_message("assistant", "c", seconds=3, message_id="c"),
        ]
        ordered = order_chronologically(feed)
        assert [m.id for m in ordered] == ["a", "b", "c"]

    def test_empty_feed(self):
        assert order_chronologically([]) == []


@pytest.mark.asyncio
async def test_streaming_delivers_deltas_then_reconciles():
    backend = MockBackend(
        supports_streaming=True,
        events=[_delta("Hel"), _delta("lo"), _delta(" world")],
        feed=FEED,
    )
    selector, state, dispatch, events, _ = _setup(backend)

    messages = await selector.retrieve(state, dispatch)

    texts = [e.text for e in events if isinstance(e, AssistantDeltaEvent)]
    assert texts == ["Hel", "Hello", "Hello world"]
    assert [m.text for m in messages] == ["hi", "Hello world"]
    assert state.messages == messages
    assert not state.is_busy
    assert backend.runs_started == 0
    assert _states(events) == ["streaming", "reconciling", "done"]


@pytest.mark.asyncio
async def test_polling_never_opens_a_stream_when_disabled():
    backend = MockBackend(
        supports_streaming=True,
        statuses=[RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.COMPLETED],
        feed=FEED,
    )
    selector, state, dispatch, events, sleep = _setup(backend, stream=False, poll_interval=0.5)

    await selector.retrieve(state, dispatch)

    assert backend.streams_opened == 0
    assert backend.status_checks == 3
    assert sleep.calls == [0.5, 0.5]
    assert [m.text for m in state.messages] == ["hi", "Hello world"]
    assert _states(events) == ["polling", "reconciling", "done"]


@pytest.mark.asyncio
async def test_backend_without_streaming_polls():
    backend = MockBackend(supports_streaming=False, feed=FEED)
    selector, state, dispatch, events, _ = _setup(backend, stream=True)

    await selector.retrieve(state, dispatch)

    assert backend.streams_opened == 0
    assert _states(events)[0] == "polling"


@pytest.mark.asyncio
async def test_open_failure_falls_back_to_polling():
    backend = MockBackend(
        supports_streaming=True,
        open_error=TransportError("stream refused", status_code=500),
        feed=FEED,
    )
    selector, state, dispatch, events, _ = _setup(backend)

    await selector.retrieve(state, dispatch)

    assert backend.streams_opened == 1
    assert backend.runs_started == 1
    assert _states(events) == ["streaming", "polling", "reconciling", "done"]
    assert state.messages[-1].text == "Hello world"


@pytest.mark.asyncio
async def test_error_event_after_open_is_terminal():
    backend = MockBackend(
        supports_streaming=True,
        events=[_delta("Par"), StreamEvent(name="error", error={"message": "bad"})],
        feed=FEED,
    )
    selector, state, dispatch, events, _ = _setup(backend)

    with pytest.raises(StreamError) as exc:
        await selector.retrieve(state, dispatch)

    assert exc.value.message == 'Streaming error: {"message": "bad"}'
    assert exc.value.payload == {"message": "bad"}
    assert backend.runs_started == 0
    assert _states(events)[-1] == "failed"
    error_deltas = [e for e in events if isinstance(e, AssistantDeltaEvent) and e.is_error]
    assert error_deltas[0].text.startswith("Par\n\nError: Streaming error:")


@pytest.mark.asyncio
async def test_failed_run_status_in_stream_raises_run_error():
    backend = MockBackend(
        supports_streaming=True,
        events=[StreamEvent(name="thread.run.failed", status=RunStatus.FAILED)],
    )
    selector, state, dispatch, _, _ = _setup(backend)

    with pytest.raises(RunError) as exc:
        await selector.retrieve(state, dispatch)

    assert "failed" in str(exc.value)


@pytest.mark.asyncio
async def test_failed_run_status_while_polling_raises_run_error():
    backend = MockBackend(statuses=[RunStatus.IN_PROGRESS, RunStatus.EXPIRED])
    selector, state, dispatch, events, sleep = _setup(backend)

    with pytest.raises(RunError) as exc:
        await selector.retrieve(state, dispatch)

    assert exc.value.status == "expired"
    assert exc.value.message == "Run ended with status: expired"
    assert len(sleep.calls) == 1
    assert _states(events) == ["polling", "failed"]


@pytest.mark.asyncio
async def test_completion_without_reply_fails_reconciliation():
    backend = MockBackend(feed=[make_message("user", "hi", 0)])
    selector, state, dispatch, events, _ = _setup(backend)

    with pytest.raises(RunError):
        await selector.retrieve(state, dispatch)

    assert _states(events) == ["polling", "reconciling", "failed"]


@pytest.mark.asyncio
async def test_reply_returned_by_dispatch_is_reconciled_without_refetch():
    backend = MockBackend(feed=[make_message("user", "stale", 0)])
    selector, state, dispatch, _, _ = _setup(backend)
    dispatch = Dispatch(session=dispatch.session, content="hi", reply=FEED)

    await selector.retrieve(state, dispatch)

    assert backend.listed == 0
    assert [m.text for m in state.messages] == ["hi", "Hello world"]


@pytest.mark.asyncio
async def test_empty_dispatch_reply_falls_back_to_listing():
    backend = MockBackend(feed=FEED)
    selector, state, dispatch, _, _ = _setup(backend)
    dispatch = Dispatch(session=dispatch.session, content="hi", reply=[])

    await selector.retrieve(state, dispatch)

    assert backend.listed == 1
    assert state.messages[-1].text == "Hello world"
