from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Dict, List, Optional, Tuple

from .assistant import WineAssistant
from .inventory_loader import InventoryStore
from .models import ConversationMessage, SessionSummary

logger = logging.getLogger("cellar.session")

WELCOME_MESSAGE = (
    "Welcome to **flere fugle**. I am your wine assistant, connected directly to our "
    "live inventory. How can I help you assist our guests today?"
)

REASON_EMPTY = "empty_message"
REASON_BUSY = "busy"
REASON_NO_INVENTORY = "no_inventory"


def _new_message(role: str, content: str) -> ConversationMessage:
    return ConversationMessage(id=uuid.uuid4().hex, role=role, content=content, timestamp=time.time())


class ChatSession:
    """One conversation: its append-only log and the one-call-at-a-time guard."""

    def __init__(
        self,
        session_id: str,
        assistant: WineAssistant,
        inventory: InventoryStore,
        welcome: bool = True,
    ) -> None:
        self.session_id = session_id
        self._assistant = assistant
        self._inventory = inventory
        self._messages: List[ConversationMessage] = []
        self._in_flight = threading.Lock()
        self.updated_at = time.time()
        if welcome:
            self._messages.append(_new_message("assistant", WELCOME_MESSAGE))

    @property
    def messages(self) -> List[ConversationMessage]:
        return list(self._messages)

    @property
    def is_loading(self) -> bool:
        return self._in_flight.locked()

    @property
    def inventory_warning(self) -> Optional[str]:
        return self._inventory.current().error

    @property
    def title(self) -> str:
        for message in self._messages:
            if message.role == "user":
                return message.content.strip().splitlines()[0][:48] or "New Chat"
        return "New Chat"

    def submit(self, text: str) -> Optional[ConversationMessage]:
        message, _ = self.submit_with_reason(text)
        return message

    def submit_with_reason(self, text: str) -> Tuple[Optional[ConversationMessage], Optional[str]]:
        """Purpose: Handle one user submission end to end.
        Inputs/Outputs: Input is the raw user text; output is (assistant message, None), or
            (None, reason) when the submission was ignored.
        Side Effects / State: Appends the user message and the reply to the log; holds
            the in-flight lock for the duration of the completion call.
        Dependencies: InventoryStore.current for the snapshot, WineAssistant.answer.
        Failure Modes: Never raises for completion failures; those come back as the
            assistant's apology text. Ignored submissions append nothing.
        If Removed: Neither the API nor any UI can drive a conversation.
        Testing Notes: A second submit while the first is blocked returns (None, "busy") and
            dispatches no second completion call.
        """
        if not text or not text.strip():
            return None, REASON_EMPTY
        if not self._in_flight.acquire(blocking=False):
            logger.info("session=%s submission rejected: reply pending", self.session_id)
            return None, REASON_BUSY
        try:
            # Take the snapshot once; a refresh landing mid-call does not affect this reply.
            snapshot = self._inventory.current()
            if not snapshot.available:
                logger.info("session=%s submission rejected: no inventory", self.session_id)
                return None, REASON_NO_INVENTORY

            history = list(self._messages)
            self._messages.append(_new_message("user", text))
            self.updated_at = time.time()
            reply = self._assistant.answer(text, history, snapshot)
            assistant_message = _new_message("assistant", reply.text)
            self._messages.append(assistant_message)
            self.updated_at = time.time()
            return assistant_message, None
        finally:
            self._in_flight.release()

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            title=self.title,
            updated_at=self.updated_at,
            busy=self.is_loading,
        )


class SessionStore:
    """In-memory registry of chat sessions; nothing survives a restart."""

    def __init__(
        self,
        assistant: WineAssistant,
        inventory: InventoryStore,
        max_sessions: Optional[int] = None,
    ) -> None:
        """Purpose: Initialize the registry of live chat sessions.
        Inputs/Outputs: Inputs are the shared assistant, the inventory store, and an
            optional max_sessions cap; no return value.
        Side Effects / State: Creates an empty session map.
        Dependencies: ChatSession.
        Failure Modes: None.
        If Removed: The HTTP API cannot keep per-conversation history.
        Testing Notes: Set a low max_sessions and verify the oldest session is dropped.
        """
        self._assistant = assistant
        self._inventory = inventory
        self._max_sessions = max_sessions
        self._sessions: Dict[str, ChatSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: Optional[str] = None) -> ChatSession:
        """Return the named session, creating it (with a fresh id when none is given)."""
        with self._lock:
            session_id = session_id or uuid.uuid4().hex
            session = self._sessions.get(session_id)
            if session is None:
                session = ChatSession(session_id, self._assistant, self._inventory)
                self._sessions[session_id] = session
                self._prune_sessions(keep=session_id)
            return session

    def list_sessions(self) -> List[SessionSummary]:
        """Session summaries, most recently updated first."""
        summaries = [session.summary() for session in list(self._sessions.values())]
        return sorted(summaries, key=lambda s: s.updated_at, reverse=True)

    def _prune_sessions(self, keep: str) -> bool:
        """Purpose: Enforce max_sessions by dropping the least recently updated sessions.
        Inputs/Outputs: Input is a session id that must survive; returns True if any
            sessions were removed.
        Side Effects / State: Mutates _sessions.
        Dependencies: Uses _max_sessions and ChatSession.updated_at ordering.
        Failure Modes: None; no-op when max_sessions is unset or not exceeded.
        If Removed: Memory grows with every new conversation.
        Testing Notes: Set a low max_sessions and verify pruning order; a session with a
            reply pending survives.
        """
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        if len(self._sessions) <= self._max_sessions:
            return False

        ordered = sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)
        # Sessions with a reply pending are never dropped, even past the cap.
        keep_ids = {keep} | {session.session_id for session in ordered if session.is_loading}
        for session in ordered:
            if len(keep_ids) >= self._max_sessions:
                break
            keep_ids.add(session.session_id)
        removed = [session_id for session_id in list(self._sessions) if session_id not in keep_ids]
        for session_id in removed:
            self._sessions.pop(session_id, None)
        if removed:
            logger.info("pruned sessions=%s", len(removed))
        return bool(removed)
