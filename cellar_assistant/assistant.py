"""Per-submission pipeline: filter the snapshot, format it, assemble, complete.

Each call to WineAssistant.answer is a stateless transform from
(history, snapshot, question) to one completion request and one reply. The
pipeline never raises to its caller; completion failures are logged and turned
into a fixed apology so the chat loop stays usable.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import RelevanceConfig, Settings
from .inventory_loader import InventorySnapshot
from .prompt_builder import CompletionRequest, HistoryEntry, build_request, format_context
from .relevance import select_relevant

logger = logging.getLogger("cellar.assistant")

EMPTY_REPLY_FALLBACK = "Database error."
COMPLETION_FAILED_REPLY = "I encountered an issue accessing the cellar records. Please try again."


@dataclass
class PipelineContext:
    """Mutable state for a single submission while it moves through the steps."""
    user_message: str
    history: Sequence[HistoryEntry]
    snapshot: InventorySnapshot
    selected: List[Mapping[str, Any]] = field(default_factory=list)
    inventory_context: str = "[]"
    request: Optional[CompletionRequest] = None
    answer_text: str = ""
    failed: bool = False
    thinking_logs: List[Dict[str, str]] = field(default_factory=list)
    started_at: float = field(default_factory=time.perf_counter)

    def log(self, event: str, detail: str, status: str = "success") -> None:
        self.thinking_logs.append({"event": event, "detail": detail, "status": status})


@dataclass
class AssistantReply:
    text: str
    failed: bool
    selected_count: int
    thinking_logs: List[Dict[str, str]]


class WineAssistant:
    def __init__(
        self,
        completion: Any,
        model: str,
        temperature: float = 0.1,
        history_pairs: int = 6,
        relevance: Optional[RelevanceConfig] = None,
        prompt_path: Optional[Path] = None,
    ) -> None:
        """Purpose: Wire the relevance filter, formatter, and completion client together.
        Inputs/Outputs: Inputs are an object exposing complete(CompletionRequest) -> str
            and the model settings; no return value.
        Side Effects / State: Stores configuration only; holds no conversation state.
        Dependencies: relevance.select_relevant, prompt_builder, the completion client.
        Failure Modes: None at init.
        If Removed: Chat submissions have nothing to answer them.
        Testing Notes: Pass a fake completion object that records requests.
        """
        self._completion = completion
        self._model = model
        self._temperature = temperature
        self._history_pairs = history_pairs
        self._relevance = relevance or RelevanceConfig()
        self._prompt_path = prompt_path

    @classmethod
    def from_settings(cls, settings: Settings, completion: Any) -> "WineAssistant":
        return cls(
            completion=completion,
            model=settings.gemini_model,
            temperature=settings.temperature,
            history_pairs=settings.history_pairs,
            relevance=settings.relevance,
            prompt_path=settings.prompts_dir / "system_instruction.md",
        )

    def answer(
        self,
        user_message: str,
        history: Sequence[HistoryEntry],
        snapshot: InventorySnapshot,
    ) -> AssistantReply:
        """Purpose: Produce the assistant reply for one user message.
        Inputs/Outputs: Inputs are the message, the log before it, and the snapshot taken
            at submission time; output is an AssistantReply.
        Side Effects / State: One completion call; logger output.
        Dependencies: Runs _step_filter, _step_format, _step_assemble, _step_complete.
        Failure Modes: Never raises; completion errors become COMPLETION_FAILED_REPLY and
            empty replies become EMPTY_REPLY_FALLBACK.
        If Removed: The chat loop cannot produce replies.
        Testing Notes: Raise from the fake completion and check the apology text.
        """
        context = PipelineContext(user_message=user_message, history=history, snapshot=snapshot)
        logger.info("question=%s records=%s", user_message, snapshot.record_count)
        self._step_filter(context)
        self._step_format(context)
        self._step_assemble(context)
        self._step_complete(context)
        elapsed_ms = int((time.perf_counter() - context.started_at) * 1000)
        logger.info(
            "answered selected=%s failed=%s elapsed_ms=%s",
            len(context.selected),
            context.failed,
            elapsed_ms,
        )
        return AssistantReply(
            text=context.answer_text,
            failed=context.failed,
            selected_count=len(context.selected),
            thinking_logs=context.thinking_logs,
        )

    def _step_filter(self, context: PipelineContext) -> None:
        context.selected = select_relevant(
            context.snapshot.records,
            context.user_message,
            config=self._relevance,
        )
        context.log("relevance_filter", f"{len(context.selected)} of {context.snapshot.record_count} records")
        logger.debug("step=filter selected=%s", len(context.selected))

    def _step_format(self, context: PipelineContext) -> None:
        context.inventory_context = format_context(context.selected)
        context.log("format_context", f"{len(context.inventory_context)} chars")

    def _step_assemble(self, context: PipelineContext) -> None:
        try:
            context.request = build_request(
                context.user_message,
                context.history,
                context.inventory_context,
                model=self._model,
                temperature=self._temperature,
                max_pairs=self._history_pairs,
                prompt_path=self._prompt_path,
            )
        except OSError:
            logger.exception("system instruction template unavailable")
            context.failed = True
            context.answer_text = COMPLETION_FAILED_REPLY
            context.log("assemble_request", "prompt template missing", status="error")
            return
        context.log("assemble_request", f"{len(context.request.contents)} turns")

    def _step_complete(self, context: PipelineContext) -> None:
        if context.request is None:
            return
        try:
            text = self._completion.complete(context.request)
        except Exception:
            logger.exception("completion call failed")
            context.failed = True
            context.answer_text = COMPLETION_FAILED_REPLY
            context.log("completion", "completion call failed", status="error")
            return

        if not text or not str(text).strip():
            context.answer_text = EMPTY_REPLY_FALLBACK
            context.log("completion", "empty reply", status="warning")
            return
        context.answer_text = str(text)
        context.log("completion", f"{len(context.answer_text)} chars")
