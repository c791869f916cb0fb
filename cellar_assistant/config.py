from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class RelevanceConfig:
    """Tunable heuristics for the lexical relevance filter."""
    min_token_length: int = 3
    max_tokens: int = 12
    token_score: int = 2
    riesling_boost: int = 10
    glass_boost: int = 6
    match_cap: int = 40
    fallback_cap: int = 60


@dataclass(frozen=True)
class Settings:
    """Configuration container for the model, inventory source, and runtime limits."""
    gemini_api_key: str
    gemini_model: str
    temperature: float
    inventory_url: str
    inventory_path: Path
    inventory_timeout: float
    history_pairs: int
    max_sessions: int
    prompts_dir: Path
    relevance: RelevanceConfig = field(default_factory=RelevanceConfig)


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values raise ValueError.
    If Removed: App cannot configure the model or inventory source and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve the local inventory fallback and prompt directory, then build Settings.
    inventory_path = os.getenv("INVENTORY_PATH")
    if inventory_path:
        inventory_file = Path(inventory_path)
    else:
        inventory_file = (BASE_DIR / ".." / "resources" / "inventory.json").resolve()

    prompts_dir = (BASE_DIR / "prompts").resolve()

    relevance = RelevanceConfig(
        min_token_length=int(os.getenv("RELEVANCE_MIN_TOKEN_LENGTH", "3")),
        max_tokens=int(os.getenv("RELEVANCE_MAX_TOKENS", "12")),
        token_score=int(os.getenv("RELEVANCE_TOKEN_SCORE", "2")),
        riesling_boost=int(os.getenv("RELEVANCE_RIESLING_BOOST", "10")),
        glass_boost=int(os.getenv("RELEVANCE_GLASS_BOOST", "6")),
        match_cap=int(os.getenv("RELEVANCE_MATCH_CAP", "40")),
        fallback_cap=int(os.getenv("RELEVANCE_FALLBACK_CAP", "60")),
    )

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-3-flash-preview"),
        temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.1")),
        inventory_url=os.getenv("INVENTORY_URL", "").strip(),
        inventory_path=inventory_file,
        inventory_timeout=float(os.getenv("INVENTORY_TIMEOUT", "15")),
        history_pairs=int(os.getenv("HISTORY_PAIRS", "6")),
        max_sessions=int(os.getenv("MAX_SESSIONS", "50")),
        prompts_dir=prompts_dir,
        relevance=relevance,
    )
