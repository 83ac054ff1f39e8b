"""
Response adapter that reconciles the backend's reply shapes into one envelope.

The backend is not type-safe: depending on the controller a reply may be
canonical ``{success, message, data}``, coded ``{code, success, data}``,
status-based ``{status, message, data}``, or something else entirely.
Shape matchers are tried in order and the first match wins.
"""

from collections.abc import Mapping
from typing import Any, Callable, Optional

from flowdesk.schemas.envelope import ApiResponse
from flowdesk.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ERROR_MESSAGE = "Request failed"
DEFAULT_SUCCESS_MESSAGE = "Request succeeded"


def _field(raw: Any, key: str, default: Any = None) -> Any:
    """Read a key from a mapping; anything else has no fields."""
    if isinstance(raw, Mapping):
        return raw.get(key, default)
    return default


def _has(raw: Any, key: str) -> bool:
    return isinstance(raw, Mapping) and key in raw


def _as_message(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _match_canonical(raw: Any, default_error: str) -> Optional[ApiResponse]:
    if isinstance(_field(raw, "success"), bool) and _has(raw, "message"):
        return ApiResponse(
            success=raw["success"],
            message=_as_message(raw["message"]),
            data=raw.get("data")
        )
    return None


def _match_coded(raw: Any, default_error: str) -> Optional[ApiResponse]:
    success = _field(raw, "success")
    if _has(raw, "code") and isinstance(success, bool):
        message = _field(raw, "message")
        return ApiResponse(
            success=success,
            message=_as_message(message) if message else (DEFAULT_SUCCESS_MESSAGE if success else default_error),
            data=_field(raw, "data")
        )
    return None


def _match_status(raw: Any, default_error: str) -> Optional[ApiResponse]:
    status = _field(raw, "status")
    if isinstance(status, str):
        success = status == "success"
        message = _field(raw, "message")
        return ApiResponse(
            success=success,
            message=_as_message(message) if message else (DEFAULT_SUCCESS_MESSAGE if success else default_error),
            data=_field(raw, "data")
        )
    return None


def _match_fallback(raw: Any, default_error: str) -> ApiResponse:
    success = bool(
        _field(raw, "success")
        or _field(raw, "ok")
        or _field(raw, "status") == "success"
        or _field(raw, "code") == 200
    )
    message = _field(raw, "message") or _field(raw, "msg") or default_error
    data = _field(raw, "data") or _field(raw, "result") or raw
    return ApiResponse(success=success, message=_as_message(message), data=data)


SHAPE_MATCHERS: tuple[Callable[[Any, str], Optional[ApiResponse]], ...] = (
    _match_canonical,
    _match_coded,
    _match_status,
)


def _is_falsy(raw: Any) -> bool:
    try:
        return not raw
    except Exception:
        # Objects whose truth value cannot be taken still count as present
        return False


def normalize(raw: Any, default_error_message: str = DEFAULT_ERROR_MESSAGE) -> ApiResponse:
    """
    Normalize any backend reply into the canonical envelope.

    Never raises: missing or odd fields degrade to defaults.

    Args:
        raw: Reply as returned by the transport
        default_error_message: Message used when the reply carries none

    Returns:
        ApiResponse: Canonical envelope
    """
    if isinstance(raw, ApiResponse):
        return raw

    if _is_falsy(raw):
        return ApiResponse(success=False, message=default_error_message)

    try:
        for matcher in SHAPE_MATCHERS:
            response = matcher(raw, default_error_message)
            if response is not None:
                return response
        return _match_fallback(raw, default_error_message)
    except Exception as e:
        logger.warning(f"Unreadable backend reply ({type(raw).__name__}): {e}")
        return ApiResponse(success=False, message=default_error_message)
