"""Human-readable messages and tips for server error codes."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ErrorCodeInfo:
    code: str
    message: str
    tip: str | None = None


_RELOGIN = "Log in again to refresh your API token, then re-run the push."
_CHECK_INPUT = "Check your input and try again."
_SLOW_DOWN = "Wait a few minutes before trying again, or use a smaller batch size."

ERROR_CODES: dict[str, ErrorCodeInfo] = {
    info.code: info
    for info in (
        # Authentication
        ErrorCodeInfo("AUTH_001", "Invalid credentials.", _RELOGIN),
        ErrorCodeInfo("AUTH_002", "Your session has expired. Please login again.", _RELOGIN),
        ErrorCodeInfo("AUTH_003", "Invalid authentication token. Please login again.", _RELOGIN),
        ErrorCodeInfo("AUTH_004", "You are not authorized to perform this action.", _RELOGIN),
        # Validation
        ErrorCodeInfo("VAL_001", "Invalid input provided.", _CHECK_INPUT),
        ErrorCodeInfo("VAL_002", "Required field is missing.", _CHECK_INPUT),
        ErrorCodeInfo("VAL_003", "Invalid format provided.", _CHECK_INPUT),
        # Database
        ErrorCodeInfo("DB_001", "A database error occurred. Please try again.", "If this persists, please contact support."),
        ErrorCodeInfo("DB_002", "The requested resource was not found."),
        ErrorCodeInfo("DB_003", "This entry already exists.", "Try using a different identifier."),
        # Rate limiting
        ErrorCodeInfo("RATE_001", "You have exceeded the rate limit.", _SLOW_DOWN),
        # Server
        ErrorCodeInfo(
            "SRV_001",
            "An internal server error occurred.",
            "The server is experiencing issues. Please try again later.",
        ),
        ErrorCodeInfo("SRV_002", "This feature is not yet implemented."),
        # Sync
        ErrorCodeInfo(
            "SYNC_001",
            "Message validation failed. Check that your data is properly formatted.",
            "Review your data format and try again.",
        ),
        ErrorCodeInfo(
            "SYNC_002",
            "Failed to process messages.",
            "Try using the --batch-size option with a smaller value.",
        ),
        ErrorCodeInfo(
            "SYNC_003",
            "Machine not found. This can happen when pushing from a new machine.",
            "The server will create the machine on the next successful push.",
        ),
        ErrorCodeInfo(
            "SYNC_004",
            "Project not found. Ensure the project path is correct.",
            "Make sure you're in the correct project directory.",
        ),
        ErrorCodeInfo(
            "SYNC_005",
            "Session not found. The session might have been deleted or corrupted.",
            "Re-run ingestion to refresh your local data.",
        ),
        ErrorCodeInfo("SYNC_006", "Sync rate limit exceeded. Please wait before syncing again.", _SLOW_DOWN),
        # Local
        ErrorCodeInfo(
            "NETWORK_UNREACHABLE",
            "Could not reach the server.",
            "Check your network connection and the API URL, then push again.",
        ),
        ErrorCodeInfo(
            "NETWORK_TIMEOUT",
            "The server did not answer in time.",
            "Check your connection or try a smaller --batch-size.",
        ),
        ErrorCodeInfo(
            "AUTH_EXPIRED",
            "The server rejected your credential.",
            _RELOGIN,
        ),
        ErrorCodeInfo("NO_CREDENTIAL", "You are not logged in.", _RELOGIN),
        ErrorCodeInfo("MISSING", "The local message row could not be loaded."),
        ErrorCodeInfo("UNREPORTED", "The server did not report an outcome for this message."),
    )
}


def lookup(code: str | None) -> ErrorCodeInfo | None:
    if not code:
        return None
    return ERROR_CODES.get(code)


def describe(code: str, fallback: str = "") -> str:
    """Friendly message for *code*, or *fallback* (then the bare code) when unknown."""
    info = lookup(code)
    if info is not None:
        return info.message
    return fallback or f"Error: {code}"


def tip_for(code: str | None) -> str | None:
    info = lookup(code)
    return info.tip if info else None


def parse_response_tag(tag: str | None) -> tuple[str | None, str]:
    """Split a stored ``failed: <code> - <message>`` tag into ``(code, message)``.

    Tags that don't follow the pattern come back as ``(None, tag)``.
    """
    if not tag:
        return None, ""
    if not tag.startswith("failed: "):
        return None, tag
    body = tag[len("failed: "):]
    code, sep, message = body.partition(" - ")
    if not sep:
        return None, body
    return code, message


__all__ = ["ErrorCodeInfo", "ERROR_CODES", "lookup", "describe", "tip_for", "parse_response_tag"]
