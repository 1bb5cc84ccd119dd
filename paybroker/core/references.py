"""
Provider reference generation.

A reference joins the booking id, a per-process monotonic millisecond
timestamp and a random suffix, then gets cut down to the provider's
constraints. Truncation shortens the booking part first so the timestamp
and suffix always survive.
"""
import re
import secrets
import threading
import time

from .exceptions import ValidationError
from .types import ReferencePolicy

# No 0/O, 1/I/L: references get read aloud and typed from bank statements.
SUFFIX_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

_clock_lock = threading.Lock()
_last_millis = 0


def monotonic_millis() -> int:
    """Wall-clock milliseconds that never repeat or go backwards in this process."""
    global _last_millis
    with _clock_lock:
        now = time.time_ns() // 1_000_000
        if now <= _last_millis:
            now = _last_millis + 1
        _last_millis = now
        return now


def random_suffix(length: int = 4) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def generate_reference(booking_id: str, policy: ReferencePolicy) -> str:
    """
    Build a fresh reference for a booking under a provider's policy.

    Numeric policies (payOS order codes) get a leading ``1``, the low 8
    digits of the timestamp and 6 random digits: 15 digits, safely below
    2**53 so JavaScript clients at the provider never round it.

    Args:
        booking_id: Caller's booking correlation id
        policy: Provider reference constraints

    Returns:
        str: Reference, already within the policy's length cap
    """
    millis = monotonic_millis()
    if policy.numeric:
        random_digits = 6
        time_digits = policy.max_length - random_digits - 1
        return (
            f"1{millis % 10**time_digits:0{time_digits}d}"
            f"{secrets.randbelow(10**random_digits):0{random_digits}d}"
        )

    tail = f"_{millis}_{random_suffix()}"
    head = "BK" + re.sub(policy.disallowed, "", str(booking_id))
    head = head[: max(policy.max_length - len(tail), 0)]
    return f"{head}{tail}"[-policy.max_length:]


def sanitize_reference(raw: str, policy: ReferencePolicy) -> str:
    """
    Apply a provider's character allow-list and length cap.

    Idempotent: sanitizing an already sanitized reference returns it unchanged.

    Raises:
        ValidationError: If nothing usable remains
    """
    if policy.numeric:
        cleaned = re.sub(r"\D", "", str(raw))[-policy.max_length:].lstrip("0")
    else:
        cleaned = re.sub(policy.disallowed, "", str(raw))[: policy.max_length]
    if not cleaned:
        raise ValidationError(f"Reference {raw!r} has no usable characters")
    return cleaned
