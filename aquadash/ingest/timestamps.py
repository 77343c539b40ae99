from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from ..errors import ParseFailure

logger = logging.getLogger(__name__)

# Matches the pt-BR locale rendering produced by the sensor firmware.
TIMESTAMP_PATTERN = re.compile(
    r"^\s*(\d{1,2})/(\d{1,2})/(\d{4}),\s*(\d{1,2}):(\d{2}):(\d{2})\s*$"
)

DEFAULT_TIMESTAMP_FIELDS = ("timestamp", "dataHora", "data_hora")
DEFAULT_ID_FIELD = "_id"
HEX_PREFIX_PATTERN = re.compile(r"[0-9a-fA-F]{8}")


def parse_timestamp(value: Any) -> datetime:
    """Parse ``DD/MM/YYYY, HH:mm:ss`` into a naive local datetime."""
    if not isinstance(value, str):
        raise ParseFailure(f"timestamp is not a string: {value!r}")
    match = TIMESTAMP_PATTERN.match(value)
    if match is None:
        raise ParseFailure(f"unrecognised timestamp: {value!r}")
    day, month, year, hour, minute, second = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError as exc:
        raise ParseFailure(f"invalid timestamp: {value!r}") from exc


def _identifier_text(identifier: Any) -> Optional[str]:
    # MongoDB extended JSON renders ObjectIds as {"$oid": "..."}.
    if isinstance(identifier, Mapping):
        identifier = identifier.get("$oid")
    if isinstance(identifier, str):
        return identifier
    return None


def identifier_instant(identifier: Any) -> float:
    """Recover creation time (epoch millis) from an ObjectId-like identifier."""
    text = _identifier_text(identifier)
    if text is None or len(text) < 8:
        raise ParseFailure(f"identifier carries no timestamp: {identifier!r}")
    # int(..., 16) alone would also accept signs, "0x" and underscores.
    if HEX_PREFIX_PATTERN.fullmatch(text[:8]) is None:
        raise ParseFailure(f"identifier prefix is not hex: {identifier!r}")
    return int(text[:8], 16) * 1000.0


class TimestampNormalizer:
    """Turns raw reading records into comparable instants and chart labels."""

    def __init__(
        self,
        timestamp_fields: Sequence[str] = DEFAULT_TIMESTAMP_FIELDS,
        id_field: str = DEFAULT_ID_FIELD,
    ) -> None:
        self.timestamp_fields = tuple(timestamp_fields)
        self.id_field = id_field

    def _parsed(self, record: Mapping[str, Any]) -> Optional[datetime]:
        for name in self.timestamp_fields:
            if name not in record:
                continue
            try:
                return parse_timestamp(record[name])
            except ParseFailure:
                continue
        return None

    def normalize(self, record: Any) -> float:
        """Return epoch millis for ``record``; 0 when nothing usable is found."""
        if not isinstance(record, Mapping):
            return 0.0
        parsed = self._parsed(record)
        if parsed is not None:
            try:
                return parsed.timestamp() * 1000.0
            except (OverflowError, OSError):
                logger.debug("Timestamp out of platform range: %s", parsed)
        try:
            return identifier_instant(record.get(self.id_field))
        except ParseFailure as exc:
            logger.debug("Falling back to epoch for reading: %s", exc)
            return 0.0

    def label(self, record: Any) -> str:
        if not isinstance(record, Mapping):
            return ""
        parsed = self._parsed(record)
        if parsed is None:
            return ""
        return parsed.strftime("%d/%m %H:%M")


default_normalizer = TimestampNormalizer()


def normalize(record: Any) -> float:
    return default_normalizer.normalize(record)


def format_label(record: Any) -> str:
    return default_normalizer.label(record)
