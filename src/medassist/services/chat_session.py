"""Chat session controller.

Owns one chat session from activation to termination:

``uninitialized -> hydrating -> idle <-> awaiting_completion``, and
``idle | awaiting_completion -> terminating -> terminated``.

A turn runs start to finish before the next one is accepted: append the user
message, persist it, build the context window, call the completion service,
append and persist the reply. A second ``submit`` while a turn is in flight
raises ``SubmissionRejectedError``. Remote failures are never fatal; they are
reported as ``ChatErrorEvent`` objects and the session stays usable.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from ..config import DEFAULT_MAX_TURNS
from ..core.state_machine import ensure_transition, is_closed
from ..domain.chat_models import (
    ChatErrorEvent,
    ChatErrorKind,
    Message,
    Notification,
    SessionSnapshot,
    SessionState,
    TerminationOutcome,
    TurnOutcome,
    TurnStatus,
)
from ..domain.errors import (
    ChatTransportError,
    SessionClosedError,
    SessionNotReadyError,
    SubmissionRejectedError,
)
from ..observability.metrics import CHAT_TURNS
from .context_window import ContextWindowBuilder
from .identity import IdentityProvider
from .notifications import ErrorReporter, LoggingErrorReporter, LoggingNotifier, Notifier
from .transcript import TranscriptStore
from .transport import ChatTransportAdapter


LOG = logging.getLogger("medassist.chat")

GREETING = (
    "Hi there! I'm MedAssist, your Indian healthcare assistant. I can help with health questions, "
    "suggest appropriate specialists in India, and provide information about medications available "
    "here. How can I help you today?"
)
EMPTY_REPLY = "I'm sorry, I couldn't process your request."
ERROR_REPLY = "I'm having trouble connecting right now. Please try again later."

SUGGESTED_QUERIES: Tuple[str, ...] = (
    "What specialist should I see for joint pain in India?",
    "Are Ayurvedic remedies effective for digestive issues?",
    "Common symptoms of dengue fever?",
)


def greeting_message() -> Message:
    return Message.create("assistant", GREETING)


class ChatSessionController:
    def __init__(
        self,
        identity: IdentityProvider,
        transport: ChatTransportAdapter,
        *,
        max_turns: int = DEFAULT_MAX_TURNS,
        transcript: Optional[TranscriptStore] = None,
        reporter: Optional[ErrorReporter] = None,
        notifier: Optional[Notifier] = None,
        seed_factory: Callable[[], Message] = greeting_message,
        on_closed: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._identity = identity
        self._transport = transport
        self._context = ContextWindowBuilder(max_turns)
        self._transcript = transcript or TranscriptStore()
        self._reporter = reporter or LoggingErrorReporter()
        self._notifier = notifier or LoggingNotifier()
        self._seed_factory = seed_factory
        self._on_closed = on_closed
        self._state = SessionState.UNINITIALIZED
        self._session_id: Optional[str] = None

    # -- read side -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def busy(self) -> bool:
        return self._state in (SessionState.HYDRATING, SessionState.AWAITING_COMPLETION)

    def messages(self) -> Tuple[Message, ...]:
        return self._transcript.all()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self._session_id,
            state=self._state,
            messages=self._transcript.all(),
            unsynced=self._transcript.unsynced(),
        )

    def suggested_queries(self) -> List[str]:
        """Starter questions, offered only before the conversation has begun."""
        if self._state != SessionState.IDLE:
            return []
        if len(self._transcript) > 1:
            return []
        return list(SUGGESTED_QUERIES)

    # -- lifecycle -----------------------------------------------------------

    async def activate(self) -> Tuple[Message, ...]:
        """Resolve the session id and hydrate the transcript from the session store."""
        if is_closed(self._state):
            raise SessionClosedError("Chat session has ended")
        if self._state != SessionState.UNINITIALIZED:
            return self._transcript.all()
        self._move(SessionState.HYDRATING)
        session_id = self._identity.resolve()
        self._session_id = session_id

        try:
            remote = await self._transport.get_session(session_id)
        except ChatTransportError as exc:
            seed = self._seed_factory()
            self._transcript.initialize([seed])
            self._transcript.mark_unsynced(seed.id)
            self._report(ChatErrorKind.HYDRATION_FAILURE, exc)
        else:
            if remote:
                self._transcript.initialize(remote)
                LOG.info("session_resumed", extra={"session_id": session_id, "messages": len(remote)})
            else:
                seed = self._seed_factory()
                self._transcript.initialize([seed])
                await self._persist(seed)
                LOG.info("session_started", extra={"session_id": session_id})

        self._move(SessionState.IDLE)
        return self._transcript.all()

    async def submit(self, text: str) -> TurnOutcome:
        if is_closed(self._state):
            raise SessionClosedError("Chat session has ended")
        if self._state == SessionState.AWAITING_COMPLETION:
            raise SubmissionRejectedError("A reply is still being generated")
        if self._state != SessionState.IDLE:
            raise SessionNotReadyError(f"Chat session is {self._state.value}")
        if not text or not text.strip():
            return TurnOutcome(status=TurnStatus.IGNORED)

        self._move(SessionState.AWAITING_COMPLETION)
        session_id = self._session_id or ""
        user_message = Message.create("user", text)
        self._transcript.append(user_message)
        await self._persist(user_message)
        if is_closed(self._state):
            CHAT_TURNS.labels(status=TurnStatus.DISCARDED.value).inc()
            return TurnOutcome(status=TurnStatus.DISCARDED, user_message=user_message)

        history = self._context.build(self._transcript.all())
        status = TurnStatus.COMPLETED
        try:
            reply = await self._transport.complete(text, history)
            content = reply.text if reply.text and reply.text.strip() else EMPTY_REPLY
        except ChatTransportError as exc:
            status = TurnStatus.RECOVERED
            content = ERROR_REPLY
            self._report(ChatErrorKind.COMPLETION_FAILURE, exc)
            self._notify("Error", "Couldn't get a response. Please try again later.", destructive=True)

        if is_closed(self._state):
            LOG.info("reply_discarded_after_close", extra={"session_id": session_id})
            CHAT_TURNS.labels(status=TurnStatus.DISCARDED.value).inc()
            return TurnOutcome(status=TurnStatus.DISCARDED, user_message=user_message)

        assistant_message = Message.create("assistant", content)
        self._transcript.append(assistant_message)
        await self._persist(assistant_message)

        if is_closed(self._state):
            CHAT_TURNS.labels(status=status.value).inc()
            return TurnOutcome(status=status, user_message=user_message, assistant_message=assistant_message)

        self._move(SessionState.IDLE)
        CHAT_TURNS.labels(status=status.value).inc()
        unsynced = set(self._transcript.unsynced())
        return TurnOutcome(
            status=status,
            user_message=user_message,
            assistant_message=assistant_message,
            unsynced=[m.id for m in (user_message, assistant_message) if m.id in unsynced],
        )

    async def resync(self) -> bool:
        """Re-send unsynced messages one by one, in transcript order.

        Never called automatically. Only ``saveMessage`` is used, so whatever
        the store already holds for this session is never overwritten (the
        local transcript may be a bare seed after a failed fetch). Stops at
        the first failure; returns True once nothing is left unsynced.
        """
        if self._state != SessionState.IDLE:
            raise SessionNotReadyError(f"Chat session is {self._state.value}")
        pending = set(self._transcript.unsynced())
        if not pending:
            return True
        session_id = self._session_id or ""
        sent = 0
        for message in self._transcript.all():
            if message.id not in pending:
                continue
            try:
                await self._transport.save_message(session_id, message)
            except ChatTransportError as exc:
                self._report(ChatErrorKind.PERSIST_FAILURE, exc, message_id=message.id)
                return False
            self._transcript.mark_synced([message.id])
            sent += 1
        LOG.info("session_resynced", extra={"session_id": session_id, "messages": sent})
        return True

    async def terminate(self) -> TerminationOutcome:
        """End the chat: purge the remote record, forget the local id and transcript."""
        if is_closed(self._state):
            raise SessionClosedError("Chat session has already ended")
        self._move(SessionState.TERMINATING)
        session_id = self._session_id or ""
        purged = True
        try:
            await self._transport.end_session(session_id)
        except ChatTransportError as exc:
            purged = False
            self._report(ChatErrorKind.TERMINATION_FAILURE, exc)
        finally:
            self._identity.invalidate()
            self._transcript.reset()
            self._move(SessionState.TERMINATED)

        if purged:
            self._notify("Chat ended", "Your conversation has been deleted.")
        else:
            self._notify(
                "Error",
                "Failed to end chat session properly. The server may still hold this conversation.",
                destructive=True,
            )
        LOG.info("session_terminated", extra={"session_id": session_id, "purged": purged})
        if self._on_closed:
            self._on_closed(session_id)
        return TerminationOutcome(session_id=session_id, purged=purged)

    # -- internals -----------------------------------------------------------

    def _move(self, target: SessionState) -> None:
        self._state = ensure_transition(self._state, target)

    async def _persist(self, message: Message) -> bool:
        try:
            await self._transport.save_message(self._session_id or "", message)
            return True
        except ChatTransportError as exc:
            if not is_closed(self._state):
                self._transcript.mark_unsynced(message.id)
            self._report(ChatErrorKind.PERSIST_FAILURE, exc, message_id=message.id)
            return False

    def _report(self, kind: ChatErrorKind, exc: ChatTransportError, *, message_id: Optional[str] = None) -> None:
        self._reporter.report(
            ChatErrorEvent(
                kind=kind,
                session_id=self._session_id,
                detail=str(exc),
                operation=exc.operation,
                message_id=message_id,
            )
        )

    def _notify(self, title: str, description: str, *, destructive: bool = False) -> None:
        self._notifier.notify(
            Notification(title=title, description=description, variant="destructive" if destructive else "default")
        )
