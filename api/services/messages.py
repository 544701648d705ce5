"""
Normalized message records.

Messages arrive from an external email source (Gmail, Outlook, a JSON dump)
already normalized into one shape. This module parses them leniently,
drops duplicates and records with unusable timestamps, and never mutates
the input.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)


def _make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware (UTC if naive)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp from a datetime, ISO-8601 string, RFC 2822 string,
    or epoch milliseconds.

    Returns:
        UTC-aware datetime, or None if the value cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _make_aware(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _make_aware(datetime.fromisoformat(text))
        except ValueError:
            pass
        try:
            return _make_aware(parsedate_to_datetime(value))
        except (TypeError, ValueError, IndexError):
            return None
    return None


def _as_list(value: Any) -> list[str]:
    """Coerce a recipients/labels field into a list of strings."""
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v) for v in value if v]


def _as_text(value: Any, name: str, message_id: Any) -> str:
    """Coerce a text field to str; containers and other objects become ""."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    logger.warning(f"Message {message_id}: ignoring non-text {name} ({type(value).__name__})")
    return ""


_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}


def _as_bool(value: Any) -> bool:
    """Parse a flag that may arrive as a bool, number or string ("false", "0")."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


@dataclass(frozen=True)
class Message:
    """A normalized email message (read-only input)."""
    id: str
    thread_id: str
    sender: str
    timestamp: datetime
    is_from_user: bool
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    snippet: str = ""
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "from": self.sender,
            "to": list(self.to),
            "cc": list(self.cc),
            "subject": self.subject,
            "body": self.body,
            "snippet": self.snippet,
            "timestamp": self.timestamp.isoformat(),
            "is_from_user": self.is_from_user,
            "labels": list(self.labels),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """
        Create Message from a dict.

        Accepts both snake_case and camelCase keys ("thread_id"/"threadId",
        "is_from_user"/"isFromUser", "timestamp"/"date", "from"/"sender").

        Raises:
            ValueError: If the id or timestamp is missing or unparseable
        """
        message_id = data.get("id")
        if not message_id:
            raise ValueError("Message has no id")

        raw_ts = data.get("timestamp", data.get("date"))
        timestamp = parse_timestamp(raw_ts)
        if timestamp is None:
            raise ValueError(f"Message {message_id} has unparseable timestamp: {raw_ts!r}")

        thread_id = data.get("thread_id") or data.get("threadId") or message_id
        is_from_user = data.get("is_from_user", data.get("isFromUser", False))

        return cls(
            id=str(message_id),
            thread_id=str(thread_id),
            sender=_as_text(data.get("from") or data.get("sender"), "sender", message_id),
            timestamp=timestamp,
            is_from_user=_as_bool(is_from_user),
            to=_as_list(data.get("to")),
            cc=_as_list(data.get("cc")),
            subject=_as_text(data.get("subject"), "subject", message_id),
            body=_as_text(data.get("body"), "body", message_id),
            snippet=_as_text(data.get("snippet"), "snippet", message_id),
            labels=_as_list(data.get("labels")),
        )


def dedupe_messages(messages: Iterable[Message]) -> list[Message]:
    """Drop repeated message ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[Message] = []
    for message in messages:
        if message.id in seen:
            continue
        seen.add(message.id)
        unique.append(message)
    return unique


def parse_messages(
    records: Iterable[Any],
    lookback_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[Message]:
    """
    Parse raw records into deduplicated Messages.

    Records may already be Message instances. Malformed records are logged
    and skipped; messages older than the lookback window are dropped.

    Args:
        records: Dicts or Message instances from the email source
        lookback_days: Drop messages older than this many days (None = keep all)
        now: Reference time for the lookback window

    Returns:
        Deduplicated list of Messages in input order
    """
    now = _make_aware(now) or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=lookback_days) if lookback_days else None

    parsed: list[Message] = []
    skipped = 0
    for record in records:
        if isinstance(record, Message):
            message = record
        else:
            try:
                message = Message.from_dict(record)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed message: {e}")
                skipped += 1
                continue
        if cutoff is not None and message.timestamp < cutoff:
            continue
        parsed.append(message)

    unique = dedupe_messages(parsed)
    if skipped or len(unique) != len(parsed):
        logger.info(
            f"Parsed {len(unique)} messages ({skipped} malformed, "
            f"{len(parsed) - len(unique)} duplicates dropped)"
        )
    return unique
