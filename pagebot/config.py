from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .google_sheets import normalize_private_key

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the page bot, its collaborators and timeouts."""
    fb_page_access_token: str
    fb_verify_token: str
    fb_app_secret: str
    graph_api_version: str
    gemini_api_key: str
    gemini_model: str
    sheet_id: str
    sheets_api_key: str
    google_service_account_email: str
    google_private_key: str
    knowledge_file: Optional[Path]
    knowledge_category: str
    cache_ttl: int
    handover_timeout: int
    fetch_timeout: float
    ai_timeout: float
    dispatch_timeout: float
    ai_answer_enabled: bool
    rank_limit: int
    unanswered_log_path: Path
    unanswered_sheet: str
    prompts_dir: Path
    port: int


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid integer/float env values raise ValueError.
    If Removed: App cannot configure tokens, sources or timeouts and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Read optional paths first, then build the frozen settings.
    knowledge_file = os.getenv("KNOWLEDGE_FILE")
    unanswered_path = os.getenv("UNANSWERED_LOG_PATH")

    return Settings(
        fb_page_access_token=os.getenv("FB_PAGE_ACCESS_TOKEN", ""),
        fb_verify_token=os.getenv("FB_VERIFY_TOKEN", ""),
        fb_app_secret=os.getenv("FB_APP_SECRET", ""),
        graph_api_version=os.getenv("GRAPH_API_VERSION", "v18.0"),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        sheet_id=os.getenv("GOOGLE_SHEET_ID", ""),
        sheets_api_key=os.getenv("GOOGLE_SHEETS_API_KEY", ""),
        google_service_account_email=os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", ""),
        google_private_key=normalize_private_key(os.getenv("GOOGLE_PRIVATE_KEY")),
        knowledge_file=Path(knowledge_file).resolve() if knowledge_file else None,
        knowledge_category=os.getenv("KNOWLEDGE_CATEGORY", "KnowledgeBase"),
        cache_ttl=int(os.getenv("CACHE_TTL", "300")),
        handover_timeout=int(os.getenv("HANDOVER_TIMEOUT", "60")),
        fetch_timeout=float(os.getenv("FETCH_TIMEOUT_SEC", "10")),
        ai_timeout=float(os.getenv("AI_TIMEOUT_SEC", "15")),
        dispatch_timeout=float(os.getenv("DISPATCH_TIMEOUT_SEC", "10")),
        ai_answer_enabled=os.getenv("AI_ANSWER_ENABLED", "0") == "1",
        rank_limit=int(os.getenv("RANK_LIMIT", "5")),
        unanswered_log_path=(
            Path(unanswered_path) if unanswered_path else BASE_DIR / "data" / "unanswered.jsonl"
        ).resolve(),
        unanswered_sheet=os.getenv("UNANSWERED_SHEET", "Unanswered"),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        port=int(os.getenv("PORT", "3000")),
    )
