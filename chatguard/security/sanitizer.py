"""
Input sanitization and structural validation.

Every free-text field (message body, display name, report reason, config
name) passes through `sanitize_string` before any further processing or
storage. The validators below raise ValidationFailed with a user-facing
message; `sanitize_string` itself never raises.
"""

import json
import re
from typing import Any

from chatguard.services.errors import ValidationFailed

# Maximum lengths per field
LIMITS = {
    "display_name": 50,
    "message": 2000,
    "config_name": 100,
    "config_json": 50000,  # serialized characters
    "report_reason": 500,
    "settings_json": 20000,
}

MIN_REPORT_REASON_LENGTH = 5

_TAG_RE = re.compile(r"<[^>]*>")
_INLINE_WHITESPACE_RE = re.compile(r"[^\S\n]+")

# Keys that must never survive into stored JSON objects
_FORBIDDEN_KEYS = ("__proto__", "constructor", "prototype")


def sanitize_string(raw: Any, max_length: int) -> str:
    """
    Strip markup tags, collapse non-newline whitespace, trim and truncate.

    Non-string input yields an empty string.
    """
    if not isinstance(raw, str):
        return ""
    text = _TAG_RE.sub("", raw)
    text = _INLINE_WHITESPACE_RE.sub(" ", text)
    return text.strip()[: max(max_length, 0)]


def validate_message(message: Any) -> str:
    sanitized = sanitize_string(message, LIMITS["message"])
    if not sanitized:
        raise ValidationFailed("Message cannot be empty")
    return sanitized


def validate_display_name(name: Any) -> str:
    sanitized = sanitize_string(name, LIMITS["display_name"])
    if not sanitized:
        raise ValidationFailed("Display name is required")
    return sanitized


def validate_report_reason(reason: Any) -> str:
    sanitized = sanitize_string(reason, LIMITS["report_reason"])
    if len(sanitized) < MIN_REPORT_REASON_LENGTH:
        raise ValidationFailed(
            f"Please provide a reason (min {MIN_REPORT_REASON_LENGTH} characters)"
        )
    return sanitized


def validate_identifier(value: Any, label: str) -> str:
    """Document ids arrive from clients; accept only short opaque tokens."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(f"{label} is required")
    value = value.strip()
    if len(value) > 128 or "/" in value:
        raise ValidationFailed(f"Invalid {label}")
    return value


def validate_json_object(value: Any, field: str, max_size: int) -> dict[str, Any]:
    """
    Ensure `value` is a plain JSON object within `max_size` serialized characters.

    Returns a re-parsed copy with non-JSON values rejected and prototype-style
    keys removed at every level.
    """
    if not isinstance(value, dict):
        raise ValidationFailed(f"{field} must be a JSON object")

    try:
        serialized = json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationFailed(f"{field} must contain only JSON values") from e

    if len(serialized) > max_size:
        raise ValidationFailed(f"{field} exceeds maximum size of {max_size} bytes")

    return _strip_forbidden_keys(json.loads(serialized))


def _strip_forbidden_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _strip_forbidden_keys(v) for k, v in value.items() if k not in _FORBIDDEN_KEYS
        }
    if isinstance(value, list):
        return [_strip_forbidden_keys(v) for v in value]
    return value


def validate_config(name: Any, config_json: Any) -> tuple[str, dict[str, Any]]:
    sanitized_name = sanitize_string(name, LIMITS["config_name"])
    if not sanitized_name:
        raise ValidationFailed("Config name is required")
    config = validate_json_object(config_json, "Config", LIMITS["config_json"])
    return sanitized_name, config


# Settings a user may change about themselves. Anything else in the payload
# (role, tier, sanction fields) is ignored.
SETTINGS_FIELDS = frozenset(
    {"theme_preference", "display_name", "dashboard_layout_settings", "desktop_preferences"}
)
VALID_THEMES = frozenset({"dark", "light", "custom"})


def validate_settings(data: Any) -> dict[str, Any]:
    """Build the user-document update for a settings save. May be empty."""
    if not isinstance(data, dict):
        raise ValidationFailed("Settings must be a JSON object")

    update: dict[str, Any] = {}

    if data.get("theme_preference") is not None:
        if data["theme_preference"] not in VALID_THEMES:
            raise ValidationFailed("Invalid theme_preference")
        update["theme_preference"] = data["theme_preference"]

    if data.get("display_name") is not None:
        update["display_name"] = validate_display_name(data["display_name"])

    for field in ("dashboard_layout_settings", "desktop_preferences"):
        if data.get(field) is not None:
            update[field] = validate_json_object(data[field], field, LIMITS["settings_json"])

    return {k: v for k, v in update.items() if k in SETTINGS_FIELDS}
