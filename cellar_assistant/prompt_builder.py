from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .config import BASE_DIR
from .models import ConversationMessage
from .utils import EMPTY_MARKER, lookup, parse_locale_number

CONTEXT_FIELDS = [
    "Name",
    "Winemaker",
    "Shelf",
    "Colour",
    "Grapes",
    "Region",
    "Country",
    "Vintage",
    "Price",
    "Glass",
    "Stock",
    "Notes",
]
SENTINEL_FIELDS = {"Price", "Stock"}

CONTEXT_PLACEHOLDER = "{{INVENTORY_CONTEXT}}"
DEFAULT_PROMPT_PATH = BASE_DIR / "prompts" / "system_instruction.md"

ROLE_MAP = {"user": "user", "assistant": "model"}

HistoryEntry = Union[ConversationMessage, Mapping[str, Any]]


@dataclass(frozen=True)
class CompletionRequest:
    """Everything the completion API needs for one reply."""
    model: str
    system_instruction: str
    contents: List[Dict[str, Any]]
    temperature: float = 0.1


@lru_cache(maxsize=8)
def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: Caches the text per path for the process lifetime.
    Dependencies: Uses Path.read_text/read_bytes.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes. A missing file raises OSError.
    If Removed: The system instruction cannot be built and every chat call fails.
    Testing Notes: Validate the placeholder is present in the shipped template.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore")
        return text.lstrip("\ufeff")


def _json_number(value: Optional[float]) -> Optional[Union[int, float]]:
    # 450.0 must serialize as 450 so the model sees the same figure as "450,-".
    if value is None:
        return None
    if value.is_integer():
        return int(value)
    return value


def format_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Purpose: Project one inventory record onto the fixed context shape.
    Inputs/Outputs: Input is a loosely-typed record; output is an ordered dict with the
        CONTEXT_FIELDS plus numeric helpers _p (price) and _s (stock).
    Side Effects / State: None.
    Dependencies: Uses lookup and parse_locale_number.
    Failure Modes: None; missing Price/Stock become "(empty)" and helpers become None.
    If Removed: format_context cannot build rows.
    Testing Notes: Price "450,-" -> _p 450; missing Stock -> "(empty)" and _s None.
    """
    row: Dict[str, Any] = {}
    for name in CONTEXT_FIELDS:
        value = lookup(record, name)
        if not value and name in SENTINEL_FIELDS:
            value = EMPTY_MARKER
        row[name] = value
    row["_p"] = _json_number(parse_locale_number(row["Price"]))
    row["_s"] = _json_number(parse_locale_number(row["Stock"]))
    return row


def format_context(records: Sequence[Mapping[str, Any]]) -> str:
    """Serialize records as the compact JSON array embedded in the system instruction."""
    if not records:
        return "[]"
    rows = [format_record(record) for record in records]
    return json.dumps(rows, ensure_ascii=False, separators=(",", ":"))


def build_system_instruction(context: str, prompt_path: Optional[Path] = None) -> str:
    template = load_prompt(prompt_path or DEFAULT_PROMPT_PATH)
    return template.replace(CONTEXT_PLACEHOLDER, context).strip()


def trim_history(history: Sequence[HistoryEntry], max_pairs: int = 6) -> List[HistoryEntry]:
    """Keep the last max_pairs user/assistant exchanges (2 * max_pairs messages)."""
    max_messages = max_pairs * 2
    if max_messages <= 0:
        return []
    return list(history[-max_messages:])


def _role_and_content(message: HistoryEntry) -> tuple:
    if isinstance(message, ConversationMessage):
        return message.role, message.content
    return str(message.get("role", "")), str(message.get("content") or "")


def to_contents(history: Sequence[HistoryEntry]) -> List[Dict[str, Any]]:
    contents: List[Dict[str, Any]] = []
    for message in history:
        role, content = _role_and_content(message)
        contents.append({"role": ROLE_MAP.get(role, "model"), "parts": [{"text": content}]})
    return contents


def build_request(
    user_message: str,
    history: Sequence[HistoryEntry],
    context: str,
    model: str,
    temperature: float = 0.1,
    max_pairs: int = 6,
    prompt_path: Optional[Path] = None,
) -> CompletionRequest:
    """Purpose: Assemble the completion request for one user submission.
    Inputs/Outputs: Inputs are the new user message, the conversation log before it,
        the serialized inventory context, and model settings; output is a
        CompletionRequest with history mapped to user/model roles and the new message last.
    Side Effects / State: None; the history sequence is only read.
    Dependencies: Uses trim_history, to_contents, and build_system_instruction.
    Failure Modes: A missing prompt template raises OSError.
    If Removed: The assistant cannot talk to the completion API.
    Testing Notes: 20 history messages -> 12 kept + 1 new; assistant maps to "model".
    """
    contents = to_contents(trim_history(history, max_pairs))
    contents.append({"role": "user", "parts": [{"text": user_message}]})
    return CompletionRequest(
        model=model,
        system_instruction=build_system_instruction(context, prompt_path),
        contents=contents,
        temperature=temperature,
    )
