from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from .assistant import WineAssistant
from .config import Settings, load_settings
from .gemini_client import GeminiClient
from .inventory_loader import InventoryLoader, InventorySnapshot, InventoryStore
from .models import ChatRequest, ChatResponse, InventoryStatus, SessionSummary, SessionTranscript
from .session_store import SessionStore

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("cellar").setLevel(log_level)
logger = logging.getLogger("cellar.app")


def _inventory_status(snapshot: InventorySnapshot) -> InventoryStatus:
    return InventoryStatus(
        available=snapshot.available,
        record_count=snapshot.record_count,
        warning=snapshot.error,
        fetched_at=snapshot.fetched_at,
        source=snapshot.source,
    )


def create_app(
    settings: Optional[Settings] = None,
    completion: Optional[Any] = None,
    loader: Optional[InventoryLoader] = None,
    load_on_startup: bool = True,
) -> FastAPI:
    """Purpose: Build the FastAPI application and its collaborators.
    Inputs/Outputs: Optional Settings, completion client, and inventory loader
        overrides; returns a configured FastAPI app.
    Side Effects / State: Creates the inventory store and session registry on
        app.state; the lifespan hook performs the first inventory fetch.
    Dependencies: GeminiClient, InventoryLoader, WineAssistant, SessionStore.
    Failure Modes: Invalid environment numbers raise ValueError from load_settings.
    If Removed: There is no HTTP surface for the chat UI.
    Testing Notes: Inject a fake completion and a loader backed by httpx.MockTransport.
    """
    settings = settings or load_settings()
    completion = completion or GeminiClient(settings)
    loader = loader or InventoryLoader(
        url=settings.inventory_url,
        path=settings.inventory_path,
        timeout=settings.inventory_timeout,
    )
    inventory = InventoryStore(loader)
    assistant = WineAssistant.from_settings(settings, completion)
    sessions = SessionStore(assistant, inventory, max_sessions=settings.max_sessions)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if load_on_startup:
            snapshot = inventory.refresh()
            logger.info("startup inventory available=%s records=%s", snapshot.available, snapshot.record_count)
        yield

    app = FastAPI(title="Cellar Wine Assistant", lifespan=lifespan)
    app.state.settings = settings
    app.state.inventory = inventory
    app.state.sessions = sessions

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "inventory_available": inventory.current().available}

    @app.post("/api/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> ChatResponse:
        """Purpose: Handle one chat submission for a session.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse with the reply or
            the reason the submission was ignored.
        Side Effects / State: Appends to the session log; one completion call.
        Dependencies: SessionStore and ChatSession.submit_with_reason.
        Failure Modes: None surfaced as HTTP errors; completion failures arrive as the
            apology text, ignored submissions as accepted=False.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Post a message with a fake completion and check the reply.
        """
        session = sessions.get_or_create(request.session_id)
        message, reason = session.submit_with_reason(request.message)
        if message is None:
            return ChatResponse(session_id=session.session_id, accepted=False, reason=reason)
        return ChatResponse(
            session_id=session.session_id,
            accepted=True,
            answer_text=message.content,
        )

    @app.get("/api/sessions", response_model=List[SessionSummary])
    def list_sessions() -> List[SessionSummary]:
        return sessions.list_sessions()

    @app.get("/api/sessions/{session_id}", response_model=SessionTranscript)
    def get_session(session_id: str) -> SessionTranscript:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Unknown session")
        return SessionTranscript(session_id=session_id, messages=session.messages)

    @app.get("/api/inventory", response_model=InventoryStatus)
    def inventory_status() -> InventoryStatus:
        return _inventory_status(inventory.current())

    @app.post("/api/inventory/refresh", response_model=InventoryStatus)
    def refresh_inventory() -> InventoryStatus:
        """Fetch a new snapshot; failures come back as available=False with a warning."""
        return _inventory_status(inventory.refresh())

    return app


app = create_app()
