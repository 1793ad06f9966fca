"""
Polycache - Entry Envelope Codec

Turns logical values and their expiry metadata into the opaque byte strings a
primitive store can hold, and back.

- Values are stored as compact UTF-8 JSON. Numeric scalars are written as
  plain decimal text, which is what native INCRBY/INCRBYFLOAT-style commands
  operate on.
- CacheEntry envelopes carry the value plus write/expire/delay times for
  stores that cannot attach a TTL themselves.
- TimeMarker payloads carry only the logical expiry and live under
  ``<key>_time`` next to a natively-expiring data key.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from ..errors import CodecError

NEVER_EXPIRES = -1

TIME_KEY_SUFFIX = "_time"
LOCK_KEY_SUFFIX = "_lock"


def time_key(key: str) -> str:
    """Key of the TimeMarker that belongs to ``key``."""
    return f"{key}{TIME_KEY_SUFFIX}"


def lock_key(key: str) -> str:
    """Key of the advisory LockToken that guards ``key``."""
    return f"{key}{LOCK_KEY_SUFFIX}"


@dataclass(slots=True, kw_only=True)
class TimeMarker:
    """Logical expiry of a key. ``expire_time <= 0`` never expires."""

    expire_time: float = NEVER_EXPIRES
    delay_time: float | None = None

    @property
    def never_expires(self) -> bool:
        return self.expire_time <= 0

    @property
    def soft_deadline(self) -> float:
        """Deadline after which the delayed-expiry API reports expiry."""
        if self.delay_time is None:
            return self.expire_time
        return self.expire_time - self.delay_time


@dataclass(slots=True, kw_only=True)
class CacheEntry(TimeMarker):
    """Value stored with its own expiry metadata."""

    value: Any
    write_time: float


def is_numeric(value: Any) -> bool:
    """True for int/float scalars (bool is deliberately excluded)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _dumps(payload: Any) -> bytes:
    try:
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise CodecError(
            f"Value is not serializable: {e}",
            details={"value_type": type(payload).__name__},
        ) from e


def _loads(raw: bytes | str) -> Any:
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        return json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        preview = raw[:100]
        raise CodecError(
            f"Stored payload is not decodable: {e}",
            details={"data_preview": preview.decode("utf-8", "replace") if isinstance(preview, bytes) else preview},
        ) from e


def encode_value(value: Any) -> bytes:
    """Encode a logical value for storage."""
    if is_numeric(value):
        if isinstance(value, float) and not math.isfinite(value):
            raise CodecError("Non-finite floats cannot be stored", details={"value": repr(value)})
        # Plain decimal text keeps native atomic increments working
        return repr(value).encode("ascii")
    return _dumps(value)


def decode_value(raw: bytes | str | int | float) -> Any:
    """Decode a stored value. Numeric text comes back as int/float."""
    if is_numeric(raw):
        return raw
    return _loads(raw)  # type: ignore[arg-type]


def encode_entry(entry: CacheEntry) -> bytes:
    payload: dict[str, Any] = {
        "value": entry.value,
        "write_time": entry.write_time,
        "expire_time": entry.expire_time,
    }
    if entry.delay_time is not None:
        payload["delay_time"] = entry.delay_time
    return _dumps(payload)


def decode_entry(raw: bytes | str | None) -> CacheEntry | None:
    """
    Decode an envelope.

    Returns None for a missing key or for a payload that is not an envelope,
    which callers treat as an absent entry.
    """
    if raw is None:
        return None
    try:
        payload = _loads(raw)
    except CodecError:
        return None
    if not isinstance(payload, dict) or "value" not in payload or "expire_time" not in payload:
        return None
    return CacheEntry(
        value=payload["value"],
        write_time=payload.get("write_time", 0),
        expire_time=payload["expire_time"],
        delay_time=payload.get("delay_time"),
    )


def encode_marker(marker: TimeMarker) -> bytes:
    payload: dict[str, Any] = {"expire_time": marker.expire_time}
    if marker.delay_time is not None:
        payload["delay_time"] = marker.delay_time
    return _dumps(payload)


def decode_marker(raw: bytes | str | None) -> TimeMarker | None:
    if raw is None:
        return None
    try:
        payload = _loads(raw)
    except CodecError:
        return None
    if not isinstance(payload, dict) or "expire_time" not in payload:
        return None
    return TimeMarker(expire_time=payload["expire_time"], delay_time=payload.get("delay_time"))
