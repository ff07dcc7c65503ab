"""
Staleness tracking for managed secrets.

Every secret written by the operator carries two annotations:

- ``vault.koudingspawn.de/lastUpdated``: when the secret was last written
- ``vault.koudingspawn.de/compare``: the instant after which a refresh is due

The compare instant is truncated to whole minutes, so staleness decisions
are only minute-granular. All timestamps are UTC and use ``DATE_FORMAT``.
"""

import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from vault_crd.constants import COMPARE_ANNOTATION, DATE_FORMAT, LAST_UPDATE_ANNOTATION
from vault_crd.errors import MetadataMissing, ValidationError

# Go style durations as accepted by Vault, e.g. "10m", "1h30m", "500ms"
_DURATION_PART = re.compile(r"(\d+)(ms|s|m|h|d)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an annotation timestamp (converted to UTC)."""
    return value.astimezone(UTC).strftime(DATE_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse an annotation timestamp into an aware UTC datetime."""
    return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=UTC)


def truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def parse_ttl(ttl: str) -> timedelta:
    """
    Parse a Vault TTL string into a timedelta.

    Accepts bare integer seconds ("3600") and sequences of number/unit pairs
    ("10m", "1h30m", "2d").

    Raises:
        ValidationError: If the TTL is malformed or not positive
    """
    value = (ttl or "").strip()
    if value.isdigit():
        duration = timedelta(seconds=int(value))
    else:
        position = 0
        duration = timedelta()
        for match in _DURATION_PART.finditer(value):
            if match.start() != position:
                break
            duration += int(match.group(1)) * _DURATION_UNITS[match.group(2)]
            position = match.end()
        if position == 0 or position != len(value):
            raise ValidationError(
                f"Invalid TTL '{ttl}', expected e.g. '30s', '10m', '1h30m' or '2d'",
                field="pkiConfiguration.ttl",
            )

    if duration <= timedelta():
        raise ValidationError(
            f"TTL '{ttl}' must be a positive duration", field="pkiConfiguration.ttl"
        )
    return duration


def encode(
    now: datetime, ttl: timedelta, margin: timedelta = timedelta()
) -> dict[str, str]:
    """
    Build the staleness annotations for a secret written at ``now``.

    Args:
        now: Instant immediately preceding the backend request
        ttl: Lifetime of the issued credential
        margin: How long before the end of the TTL a refresh becomes due

    Returns:
        Annotation dict with the last-update and compare timestamps
    """
    compare = truncate_to_minute((now + ttl - margin).astimezone(UTC))
    return {
        LAST_UPDATE_ANNOTATION: format_timestamp(now),
        COMPARE_ANNOTATION: format_timestamp(compare),
    }


def decode(annotations: Mapping[str, str] | None) -> datetime:
    """
    Read the compare instant from secret annotations.

    Raises:
        MetadataMissing: If the annotation is absent or unparsable
    """
    raw = (annotations or {}).get(COMPARE_ANNOTATION)
    if not raw:
        raise MetadataMissing(f"Annotation {COMPARE_ANNOTATION} is missing")
    try:
        return parse_timestamp(raw)
    except ValueError as e:
        raise MetadataMissing(
            f"Annotation {COMPARE_ANNOTATION} has invalid value '{raw}'"
        ) from e


def is_stale(annotations: Mapping[str, str] | None, now: datetime) -> bool:
    """True once ``now`` has reached the compare instant (inclusive)."""
    return now >= decode(annotations)
