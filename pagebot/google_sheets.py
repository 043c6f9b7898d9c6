from __future__ import annotations

"""Google Sheets API endpoints and service-account sessions."""

import logging
from typing import Optional
from urllib.parse import quote

from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

logger = logging.getLogger("pagebot.sheets")

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_URI = "https://oauth2.googleapis.com/token"


def values_url(sheet_id: str, range_name: str) -> str:
    """Values endpoint for a worksheet title or A1 range."""
    return f"{SHEETS_API_URL}/{sheet_id}/values/{quote(range_name, safe='')}"


def normalize_private_key(raw: Optional[str]) -> str:
    # .env files carry the PEM with literal "\n" sequences.
    if not raw:
        return ""
    return raw.replace("\\n", "\n")


def service_account_session(email: str, private_key: str) -> Optional[AuthorizedSession]:
    """Purpose: Build an authorized HTTP session for a Sheets service account.
    Inputs/Outputs: Inputs are the service account email and PEM private key; output
        is an AuthorizedSession, or None when either value is missing.
    Side Effects / State: None until the first request refreshes the access token.
    Dependencies: google-auth service_account.Credentials and AuthorizedSession.
    Failure Modes: A malformed private key raises ValueError at startup.
    If Removed: Private sheets cannot be read and unanswered questions stay local.
    Testing Notes: Patch Credentials.from_service_account_info and check the scope.
    """
    # Both values are needed; a partial configuration falls back to the API key.
    if not email or not private_key:
        return None
    credentials = service_account.Credentials.from_service_account_info(
        {
            "type": "service_account",
            "client_email": email,
            "private_key": private_key,
            "token_uri": TOKEN_URI,
        },
        scopes=[SHEETS_SCOPE],
    )
    logger.info("using service account %s for Google Sheets", email)
    return AuthorizedSession(credentials)
