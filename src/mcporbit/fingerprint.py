# Content fingerprint for MCP server identity
import hashlib
import json
from typing import Any

# ABOUTME: Headers that vary by client tooling and never identify a server
IGNORED_HEADERS = frozenset({"accept", "content-type", "user-agent"})

SEMANTIC_KEYS = ("type", "command", "args", "cwd", "url", "headers", "env")


def normalize_headers(headers: dict[str, str] | None) -> dict[str, str] | None:
    """Drop cosmetic headers (case-insensitive); empty result becomes None."""
    if not headers:
        return None
    filtered = {
        key: value for key, value in headers.items()
        if key.lower() not in IGNORED_HEADERS
    }
    return filtered or None


def canonical_json(value: Any) -> str:
    """Serialize with recursively sorted keys; list order is kept."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def calculate_fingerprint(fields: dict[str, Any]) -> str:
    """Hash the semantic fields of a server definition.

    ABOUTME: Name, tags and timestamps are deliberately not inputs
    ABOUTME: Missing keys hash the same as explicit None

    Args:
        fields: Mapping with any of type/command/args/cwd/url/headers/env

    Returns:
        SHA-256 hex digest

    Examples:
        >>> a = calculate_fingerprint({"type": "http", "url": "https://x", "headers": {"Accept": "*/*"}})
        >>> b = calculate_fingerprint({"type": "http", "url": "https://x"})
        >>> a == b
        True
    """
    data = {key: fields.get(key) for key in SEMANTIC_KEYS}
    data["headers"] = normalize_headers(data["headers"])
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()
