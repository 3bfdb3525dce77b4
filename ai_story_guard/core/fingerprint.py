"""
Request fingerprinting for the content cache.

Turns a request payload into a stable, content-addressed cache key.
"""

import hashlib
import json
from typing import Any, Mapping, Tuple

# Long free-text fields only contribute their first characters to the key
MAX_FIELD_CHARS = 500


def canonicalize(value: Any) -> Any:
    """Normalize a payload so equivalent requests serialize identically.

    Mappings are rebuilt with sorted string keys, sequences are
    normalized element-wise and strings are truncated to
    MAX_FIELD_CHARS. Decimals and other non-JSON scalars are
    converted to strings.

    Args:
        value: Arbitrary JSON-like payload

    Returns:
        Normalized copy of the payload
    """
    if isinstance(value, Mapping):
        return {str(k): canonicalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, str):
        return value[:MAX_FIELD_CHARS]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)[:MAX_FIELD_CHARS]


def request_digest(payload: Mapping[str, Any]) -> str:
    """Compute the SHA-256 hex digest of a canonicalized payload."""
    encoded = json.dumps(
        canonicalize(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def cache_key(kind: str, payload: Mapping[str, Any]) -> str:
    """Derive the cache key for a request.

    The kind prefix keeps identical payloads of different kinds apart.
    """
    return f"{kind}:{request_digest(payload)}"


def cache_key_and_digest(kind: str, payload: Mapping[str, Any]) -> Tuple[str, str]:
    """Return both the cache key and the bare digest."""
    digest = request_digest(payload)
    return f"{kind}:{digest}", digest
