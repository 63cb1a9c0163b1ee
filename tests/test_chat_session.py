import asyncio

import pytest

from src.medassist.domain.chat_models import ChatErrorKind, Message, SessionState, TurnStatus
from src.medassist.domain.errors import (
    InvalidTransitionError,
    SessionClosedError,
    SessionNotReadyError,
    SubmissionRejectedError,
)
from src.medassist.services.chat_session import (
    EMPTY_REPLY,
    ERROR_REPLY,
    GREETING,
    SUGGESTED_QUERIES,
)
from tests.utils import make_controller


AYURVEDA = "Are Ayurvedic remedies effective for digestive issues?"


@pytest.mark.asyncio
async def test_activate_with_empty_store_seeds_and_persists_greeting():
    controller, store, _, reporter, _ = make_controller()

    messages = await controller.activate()

    assert controller.state == SessionState.IDLE
    assert controller.session_id == "sess-1"
    assert len(messages) == 1
    assert messages[0].role == "assistant"
    assert messages[0].content == GREETING
    assert store.ops() == ["getSession", "saveMessage"]
    assert store.saved_messages() == [messages[0]]
    assert reporter.events == []


@pytest.mark.asyncio
async def test_activate_resumes_remote_transcript_exactly():
    history = [
        Message.create("assistant", "Hello"),
        Message.create("user", "I have a headache"),
        Message.create("assistant", "How long has it lasted?"),
    ]
    controller, store, _, _, _ = make_controller(sessions={"sess-1": history})

    messages = await controller.activate()

    assert list(messages) == history
    assert store.ops() == ["getSession"]
    assert controller.suggested_queries() == []


@pytest.mark.asyncio
async def test_activate_fetch_failure_falls_back_to_local_seed():
    controller, store, _, reporter, _ = make_controller()
    store.failing.add("getSession")

    messages = await controller.activate()

    assert controller.state == SessionState.IDLE
    assert [m.content for m in messages] == [GREETING]
    assert controller.snapshot().unsynced == (messages[0].id,)
    assert "saveMessage" not in store.ops()
    assert [e.kind for e in reporter.events] == [ChatErrorKind.HYDRATION_FAILURE]
    assert reporter.notifications == []


@pytest.mark.asyncio
async def test_activate_twice_does_not_rehydrate():
    controller, store, _, _, _ = make_controller()
    first = await controller.activate()
    second = await controller.activate()
    assert first == second
    assert store.ops().count("getSession") == 1


@pytest.mark.asyncio
async def test_activate_mints_and_persists_id_when_none_stored():
    controller, store, _, _, identity = make_controller()
    identity.invalidate()

    await controller.activate()

    assert controller.session_id
    assert controller.session_id != "sess-1"
    assert identity.resolve() == controller.session_id
    assert store.calls[0] == ("getSession", controller.session_id, None)


@pytest.mark.asyncio
async def test_first_question_round_trip_persists_in_order():
    controller, store, completions, _, _ = make_controller()
    completions.replies = ["Some remedies may help; see a doctor if symptoms persist."]
    await controller.activate()

    outcome = await controller.submit(AYURVEDA)

    assert outcome.status == TurnStatus.COMPLETED
    messages = controller.messages()
    assert [m.role for m in messages] == ["assistant", "user", "assistant"]
    assert messages[1].content == AYURVEDA
    assert messages[2].content.startswith("Some remedies")
    assert store.saved_messages() == list(messages)

    prompt, history = completions.calls[0]
    assert prompt == AYURVEDA
    assert [(t.role, t.content) for t in history] == [("assistant", GREETING), ("user", AYURVEDA)]
    assert controller.state == SessionState.IDLE


@pytest.mark.asyncio
async def test_whitespace_only_input_is_ignored():
    controller, store, completions, _, _ = make_controller()
    await controller.activate()
    calls_before = list(store.calls)

    outcome = await controller.submit("   ")

    assert outcome.status == TurnStatus.IGNORED
    assert controller.state == SessionState.IDLE
    assert store.calls == calls_before
    assert completions.calls == []
    assert len(controller.messages()) == 1


@pytest.mark.asyncio
async def test_transcript_grows_by_two_per_turn_and_context_stays_bounded():
    controller, _, completions, _, _ = make_controller(max_turns=10)
    await controller.activate()

    turns = 12
    for i in range(turns):
        await controller.submit(f"question {i}")
        prompt, history = completions.calls[-1]
        assert len(history) <= 10
        assert history[-1].role == "user"
        assert history[-1].content == prompt

    assert len(controller.messages()) == 1 + 2 * turns


@pytest.mark.asyncio
async def test_completion_failure_appends_one_fallback_and_recovers():
    controller, store, completions, reporter, _ = make_controller()
    await controller.activate()
    completions.error = TimeoutError("upstream timed out")

    outcome = await controller.submit("Common symptoms of dengue fever?")

    assert outcome.status == TurnStatus.RECOVERED
    assert outcome.assistant_message.content == ERROR_REPLY
    messages = controller.messages()
    assert len(messages) == 3
    assert [m.role for m in messages[1:]] == ["user", "assistant"]
    assert store.saved_messages()[-1].content == ERROR_REPLY
    assert controller.state == SessionState.IDLE
    assert [e.kind for e in reporter.events] == [ChatErrorKind.COMPLETION_FAILURE]
    assert reporter.notifications[-1].variant == "destructive"

    completions.error = None
    follow_up = await controller.submit("Any home care tips?")
    assert follow_up.status == TurnStatus.COMPLETED
    assert len(controller.messages()) == 5


@pytest.mark.asyncio
async def test_blank_completion_text_uses_apology():
    controller, _, completions, _, _ = make_controller()
    completions.replies = ["   "]
    await controller.activate()

    outcome = await controller.submit("hello")

    assert outcome.status == TurnStatus.COMPLETED
    assert outcome.assistant_message.content == EMPTY_REPLY


@pytest.mark.asyncio
async def test_persist_failure_keeps_message_visible_and_flags_it():
    controller, store, completions, reporter, _ = make_controller()
    await controller.activate()
    store.fail_next.add("saveMessage")

    outcome = await controller.submit("Is paracetamol safe with ibuprofen?")

    assert outcome.status == TurnStatus.COMPLETED
    assert outcome.unsynced == [outcome.user_message.id]
    assert outcome.user_message in controller.messages()
    assert len(completions.calls) == 1
    assert [e.kind for e in reporter.events] == [ChatErrorKind.PERSIST_FAILURE]
    assert reporter.events[0].message_id == outcome.user_message.id


@pytest.mark.asyncio
async def test_second_submission_while_awaiting_is_rejected():
    controller, _, completions, _, _ = make_controller()
    await controller.activate()
    completions.gate = asyncio.Event()

    first = asyncio.create_task(controller.submit("first question"))
    await completions.started.wait()
    assert controller.state == SessionState.AWAITING_COMPLETION

    with pytest.raises(SubmissionRejectedError):
        await controller.submit("second question")

    completions.gate.set()
    outcome = await first
    assert outcome.status == TurnStatus.COMPLETED
    assert len(controller.messages()) == 3

    completions.gate = None
    await controller.submit("second question")
    _, history = completions.calls[-1]
    assert [t.content for t in history][-3:] == ["first question", "reply to: first question", "second question"]


@pytest.mark.asyncio
async def test_submit_before_activation_is_refused():
    controller, _, _, _, _ = make_controller()
    with pytest.raises(SessionNotReadyError):
        await controller.submit("hello")


@pytest.mark.asyncio
async def test_terminate_purges_remote_and_mints_fresh_id():
    closed = []
    controller, store, _, reporter, identity = make_controller()
    controller._on_closed = closed.append
    await controller.activate()
    await controller.submit("hello")

    outcome = await controller.terminate()

    assert outcome.purged is True
    assert outcome.session_id == "sess-1"
    assert ("endSession", "sess-1", None) in store.calls
    assert "sess-1" not in store.sessions
    assert controller.state == SessionState.TERMINATED
    assert controller.messages() == ()
    assert identity.resolve() != "sess-1"
    assert reporter.notifications[-1].title == "Chat ended"
    assert closed == ["sess-1"]


@pytest.mark.asyncio
async def test_terminate_failure_still_invalidates_identity():
    controller, store, _, reporter, identity = make_controller()
    await controller.activate()
    store.failing.add("endSession")

    outcome = await controller.terminate()

    assert outcome.purged is False
    assert controller.state == SessionState.TERMINATED
    assert identity.resolve() != "sess-1"
    assert [e.kind for e in reporter.events] == [ChatErrorKind.TERMINATION_FAILURE]
    assert reporter.notifications[-1].variant == "destructive"


@pytest.mark.asyncio
async def test_terminated_session_refuses_further_use():
    controller, _, _, _, _ = make_controller()
    await controller.activate()
    await controller.terminate()

    with pytest.raises(SessionClosedError):
        await controller.submit("hello again")
    with pytest.raises(SessionClosedError):
        await controller.terminate()
    with pytest.raises(SessionClosedError):
        await controller.activate()


@pytest.mark.asyncio
async def test_terminate_before_activation_is_invalid():
    controller, _, _, _, _ = make_controller()
    with pytest.raises(InvalidTransitionError):
        await controller.terminate()


@pytest.mark.asyncio
async def test_reply_arriving_after_termination_is_discarded():
    controller, store, completions, _, _ = make_controller()
    await controller.activate()
    completions.gate = asyncio.Event()

    pending = asyncio.create_task(controller.submit("late question"))
    await completions.started.wait()
    await controller.terminate()
    completions.gate.set()
    outcome = await pending

    assert outcome.status == TurnStatus.DISCARDED
    assert outcome.assistant_message is None
    assert controller.messages() == ()
    assert store.ops()[-1] == "endSession"
    assert controller.state == SessionState.TERMINATED


@pytest.mark.asyncio
async def test_suggested_queries_only_before_conversation_starts():
    controller, _, _, _, _ = make_controller()
    assert controller.suggested_queries() == []

    await controller.activate()
    assert controller.suggested_queries() == list(SUGGESTED_QUERIES)

    await controller.submit(SUGGESTED_QUERIES[0])
    assert controller.suggested_queries() == []


@pytest.mark.asyncio
async def test_suggested_queries_hidden_for_resumed_conversation():
    history = [Message.create("assistant", "Hello")] + [
        Message.create("user" if i % 2 else "assistant", f"turn {i}") for i in range(1, 5)
    ]
    controller, _, _, _, _ = make_controller(sessions={"sess-1": history})
    await controller.activate()
    assert controller.suggested_queries() == []


@pytest.mark.asyncio
async def test_resync_resends_unsynced_messages_and_clears_flags():
    controller, store, _, _, _ = make_controller()
    await controller.activate()
    store.fail_next.add("saveMessage")
    outcome = await controller.submit("hello")
    assert controller.snapshot().unsynced == (outcome.user_message.id,)
    calls_before = len(store.calls)

    assert await controller.resync() is True

    resent = store.calls[calls_before:]
    assert [(op, sid) for op, sid, _ in resent] == [("saveMessage", "sess-1")]
    assert resent[0][2] == outcome.user_message
    assert "saveSession" not in store.ops()
    assert controller.snapshot().unsynced == ()


@pytest.mark.asyncio
async def test_resync_after_failed_fetch_keeps_stored_history():
    stored = [
        Message.create("assistant", "Hi there!"),
        Message.create("user", "old question"),
        Message.create("assistant", "old answer"),
    ]
    controller, store, _, _, _ = make_controller(sessions={"sess-1": stored})
    store.fail_next.add("getSession")
    messages = await controller.activate()
    assert [m.content for m in messages] == [GREETING]

    assert await controller.resync() is True

    contents = [m.content for m in store.sessions["sess-1"]]
    assert contents[:3] == ["Hi there!", "old question", "old answer"]
    assert contents[-1] == GREETING
    assert "saveSession" not in store.ops()


@pytest.mark.asyncio
async def test_resync_failure_keeps_flags():
    controller, store, _, reporter, _ = make_controller()
    store.failing.add("getSession")
    await controller.activate()
    store.failing.add("saveMessage")

    assert await controller.resync() is False
    assert len(controller.snapshot().unsynced) == 1
    assert reporter.events[-1].kind == ChatErrorKind.PERSIST_FAILURE
    assert reporter.events[-1].message_id == controller.snapshot().unsynced[0]


@pytest.mark.asyncio
async def test_resync_without_pending_messages_skips_remote_call():
    controller, store, _, _, _ = make_controller()
    await controller.activate()
    calls_before = len(store.calls)
    assert await controller.resync() is True
    assert len(store.calls) == calls_before
