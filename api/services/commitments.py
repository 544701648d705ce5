"""
Commitment Tracking for relationship health.

Extracts and tracks commitments/promises found in email:
- Promises the user made to the contact ("outbound")
- Promises the contact made to the user ("inbound")

Lifecycle: pending -> overdue (due date passed) -> fulfilled.
Transitions only move forward; fulfilled is terminal.
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from api.services.messages import Message, parse_timestamp
from api.services.oracle import CommitmentOracle, OracleError
from api.services.prompt_sanitization import escape_prompt_delimiters, sanitize_for_prompt
from config.settings import settings
from config.trajectory_config import (
    BOILERPLATE_MARKERS,
    FULFILLMENT_INDICATORS,
    MAX_PROMPT_BODY_CHARS,
    MIN_BODY_LENGTH,
    MIN_COMMITMENT_CONFIDENCE,
    SUBJECT_MATCH_PREFIX,
    TEXT_MATCH_PREFIX,
)

logger = logging.getLogger(__name__)

DIRECTION_OUTBOUND = "outbound"  # The user promised
DIRECTION_INBOUND = "inbound"    # The contact promised

STATUS_PENDING = "pending"
STATUS_OVERDUE = "overdue"
STATUS_FULFILLED = "fulfilled"

OPEN_STATUSES = (STATUS_PENDING, STATUS_OVERDUE)

_ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_OVERDUE, STATUS_FULFILLED},
    STATUS_OVERDUE: {STATUS_FULFILLED},
    STATUS_FULFILLED: set(),
}

_COMMITMENT_NAMESPACE = uuid.UUID("5b0f7a52-1c3e-4d8e-9a61-2f4c8e7d9b10")


class InvalidCommitmentTransition(ValueError):
    """Raised when a status change would move a commitment backward."""
    pass


@dataclass(frozen=True)
class Commitment:
    """
    A commitment/promise extracted from one message.

    Immutable: status changes produce a new instance with the change
    appended to status_history.
    """
    id: str
    direction: str
    commitment_text: str
    source_message_id: str
    source_subject: str
    source_date: datetime
    detected_date: datetime
    context: str = ""
    source_thread_id: Optional[str] = None
    due_date: Optional[datetime] = None
    status: str = STATUS_PENDING
    fulfilled_date: Optional[datetime] = None
    confidence: float = 0.5
    status_history: tuple[tuple[str, datetime], ...] = field(default_factory=tuple)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_overdue(self) -> bool:
        return self.status == STATUS_OVERDUE

    def is_past_due(self, now: datetime) -> bool:
        """Check if the due date has passed while the commitment is still open."""
        return self.is_open and self.due_date is not None and self.due_date < now

    def transition_to(self, status: str, at: datetime) -> "Commitment":
        """
        Return a copy moved to a new status.

        Raises:
            InvalidCommitmentTransition: For unknown statuses or backward moves
        """
        if status == self.status:
            return self
        allowed = _ALLOWED_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise InvalidCommitmentTransition(
                f"Cannot move commitment {self.id} from {self.status} to {status}"
            )
        return replace(
            self,
            status=status,
            fulfilled_date=at if status == STATUS_FULFILLED else self.fulfilled_date,
            status_history=self.status_history + ((status, at),),
        )

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "direction": self.direction,
            "commitment_text": self.commitment_text,
            "context": self.context,
            "source_message_id": self.source_message_id,
            "source_thread_id": self.source_thread_id,
            "source_subject": self.source_subject,
            "source_date": self.source_date.isoformat(),
            "detected_date": self.detected_date.isoformat(),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "fulfilled_date": self.fulfilled_date.isoformat() if self.fulfilled_date else None,
            "confidence": self.confidence,
            "status_history": [
                {"status": status, "at": at.isoformat()} for status, at in self.status_history
            ],
        }


class CommitmentCandidate(BaseModel):
    """One commitment as reported by the oracle, validated strictly."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str = Field(min_length=1)
    made_by: Literal["sender", "recipient"] = Field(alias="madeBy")
    deadline: Optional[str] = None
    context: str = ""
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("deadline", mode="before")
    @classmethod
    def deadline_as_text(cls, v):
        # Non-string deadlines (e.g. 20260310) are treated as absent
        return v if isinstance(v, str) else None


# =============================================================================
# Fulfillment heuristics
# =============================================================================
# Precision/recall tradeoff: relatedness is a loose prefix/thread match and the
# indicators are plain substrings ("sent" also matches "consent"), so this
# over-detects on chatty threads and under-detects when the follow-up uses
# different wording. It is a pure predicate; status changes live elsewhere.

def contains_fulfillment_indicator(text: str) -> bool:
    """Check for phrases like "attached" or "as promised"."""
    lower = (text or "").lower()
    return any(indicator in lower for indicator in FULFILLMENT_INDICATORS)


def is_related_message(commitment: Commitment, message: Message) -> bool:
    """
    Check whether a later message plausibly follows up on a commitment.

    Related means: same thread, or the subject contains the first
    SUBJECT_MATCH_PREFIX characters of the source subject, or the body
    contains the first TEXT_MATCH_PREFIX characters of the commitment text
    (case-insensitive).
    """
    if message.timestamp <= commitment.source_date:
        return False
    if message.id == commitment.source_message_id:
        return False
    if commitment.source_thread_id and message.thread_id == commitment.source_thread_id:
        return True

    subject_prefix = commitment.source_subject.lower()[:SUBJECT_MATCH_PREFIX].strip()
    if subject_prefix and subject_prefix in message.subject.lower():
        return True

    text_prefix = commitment.commitment_text.lower()[:TEXT_MATCH_PREFIX].strip()
    return bool(text_prefix) and text_prefix in message.body.lower()


def is_fulfillment_evidence(commitment: Commitment, message: Message) -> bool:
    """A related later message that contains a fulfillment indicator."""
    return is_related_message(commitment, message) and contains_fulfillment_indicator(message.body)


def refresh_overdue(commitments: Iterable[Commitment], now: datetime) -> list[Commitment]:
    """Move pending commitments whose due date has passed to overdue."""
    refreshed = []
    for commitment in commitments:
        if commitment.status == STATUS_PENDING and commitment.is_past_due(now):
            commitment = commitment.transition_to(STATUS_OVERDUE, now)
        refreshed.append(commitment)
    return refreshed


def update_commitment_statuses(
    commitments: list[Commitment],
    messages: Iterable[Message],
    now: Optional[datetime] = None,
) -> list[Commitment]:
    """
    Re-evaluate open commitments against newer messages.

    Pending commitments past their due date become overdue; any open
    commitment with fulfillment evidence becomes fulfilled at `now`.
    Fulfilled commitments are returned unchanged.

    Returns:
        New list in the same order as the input
    """
    now = now or datetime.now(timezone.utc)
    messages = list(messages)
    updated = []

    for commitment in refresh_overdue(commitments, now):
        if commitment.is_open and any(is_fulfillment_evidence(commitment, m) for m in messages):
            commitment = commitment.transition_to(STATUS_FULFILLED, now)
            logger.debug(f"Commitment {commitment.id} marked fulfilled")
        updated.append(commitment)

    return updated


def get_open_commitments(commitments: Iterable[Commitment]) -> list[Commitment]:
    """Pending or overdue commitments."""
    return [c for c in commitments if c.is_open]


# =============================================================================
# Extraction
# =============================================================================

class CommitmentExtractor:
    """
    Extracts commitments from messages using the text-classification oracle.

    Identifies promises in both directions:
    - "I'll send you..." from the user -> outbound
    - "I'll get back to you..." from the contact -> inbound

    The oracle is injected; the extractor never creates or closes it.
    """

    def __init__(
        self,
        oracle: CommitmentOracle,
        max_retries: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
        min_confidence: float = MIN_COMMITMENT_CONFIDENCE,
    ):
        """
        Initialize extractor.

        Args:
            oracle: Client exposing `async generate(prompt) -> str`
            max_retries: Attempts per message (default from settings)
            retry_base_seconds: Backoff base delay (default from settings)
            min_confidence: Candidates below this are discarded
        """
        self.oracle = oracle
        self.max_retries = max(1, max_retries if max_retries is not None else settings.oracle_max_retries)
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.oracle_retry_base_seconds
        )
        self.min_confidence = min_confidence

    @staticmethod
    def should_analyze(message: Message) -> bool:
        """Skip very short bodies and automated/boilerplate mail."""
        if len(message.body) < MIN_BODY_LENGTH:
            return False
        lower_body = message.body.lower()
        return not any(marker in lower_body for marker in BOILERPLATE_MARKERS)

    def build_prompt(self, message: Message) -> str:
        """Build the commitment extraction prompt for one message."""
        body = sanitize_for_prompt(message.body, MAX_PROMPT_BODY_CHARS)
        recipients = ", ".join(message.to)

        return f"""You are analyzing an email to extract commitments and promises.

A commitment is when someone says they will do something. Look for:
- "I'll send you...", "I will follow up...", "Let me get back to you..."
- "I'll check and...", "Will do", "I'll make sure...", "I promise to..."
- Any future tense statement about an action they will take

For each commitment found, extract:
1. text: the exact commitment text
2. madeBy: who made it, "sender" or "recipient"
3. deadline: any mentioned deadline as YYYY-MM-DD, or null
4. context: brief surrounding context
5. confidence: 0.0 to 1.0

RULES:
1. Only extract ACTUAL commitments, not hypotheticals or suggestions
2. Ignore automated signatures, disclaimers, and boilerplate
3. "Let me know if you need anything" is NOT a commitment
4. Focus on concrete, actionable promises

EMAIL:
From: {escape_prompt_delimiters(message.sender)}
To: {escape_prompt_delimiters(recipients)}
Subject: {escape_prompt_delimiters(message.subject)}
Date: {message.timestamp.isoformat()}
Body:
{body}

Return ONLY valid JSON (no markdown, no explanation):
{{"commitments": [{{"text": "...", "madeBy": "sender", "deadline": null, "context": "...", "confidence": 0.8}}]}}

If no commitments found, return: {{"commitments": []}}"""

    def parse_response(
        self,
        response_text: str,
        message: Message,
        now: datetime,
    ) -> list[Commitment]:
        """
        Parse an oracle response into Commitments.

        Malformed JSON yields no commitments; individual malformed or
        low-confidence entries are dropped.
        """
        text = response_text or ""
        if "```json" in text:
            json_start = text.find("```json") + 7
            json_end = text.find("```", json_start)
            text = text[json_start:json_end].strip()
        elif "```" in text:
            json_start = text.find("```") + 3
            json_end = text.find("```", json_start)
            text = text[json_start:json_end].strip()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse commitment JSON for message {message.id}: {e}")
            logger.debug(f"Response was: {response_text[:500] if response_text else ''}")
            return []

        if isinstance(data, dict):
            items = data.get("commitments", [])
        elif isinstance(data, list):
            items = data
        else:
            items = []
        if not isinstance(items, list):
            logger.warning(f"Oracle returned non-list commitments for message {message.id}")
            return []

        commitments = []
        for index, item in enumerate(items):
            try:
                candidate = CommitmentCandidate.model_validate(item)
            except ValidationError as e:
                logger.debug(f"Dropping malformed candidate for message {message.id}: {e}")
                continue
            if candidate.confidence < self.min_confidence:
                continue
            commitments.append(self.convert_candidate(candidate, message, now, index))

        return commitments

    @staticmethod
    def convert_candidate(
        candidate: CommitmentCandidate,
        message: Message,
        now: datetime,
        index: int = 0,
    ) -> Commitment:
        """Turn a validated candidate into a Commitment."""
        if candidate.made_by == "sender":
            direction = DIRECTION_OUTBOUND if message.is_from_user else DIRECTION_INBOUND
        else:
            direction = DIRECTION_INBOUND if message.is_from_user else DIRECTION_OUTBOUND

        due_date = parse_timestamp(candidate.deadline) if candidate.deadline else None
        status = STATUS_OVERDUE if due_date is not None and due_date < now else STATUS_PENDING

        commitment_id = str(uuid.uuid5(
            _COMMITMENT_NAMESPACE,
            f"{message.id}:{index}:{candidate.text}",
        ))

        return Commitment(
            id=commitment_id,
            direction=direction,
            commitment_text=candidate.text,
            context=candidate.context,
            source_message_id=message.id,
            source_thread_id=message.thread_id,
            source_subject=message.subject,
            source_date=message.timestamp,
            detected_date=now,
            due_date=due_date,
            status=status,
            confidence=candidate.confidence,
            status_history=((status, now),),
        )

    async def _generate_with_retry(self, prompt: str, message_id: str) -> Optional[str]:
        """Call the oracle with exponential backoff; None once retries run out."""
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self.oracle.generate(prompt)
            except OracleError as e:
                last_error = e
                logger.warning(
                    f"Oracle call failed for message {message_id} "
                    f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(min(self.retry_base_seconds * 2 ** attempt, 30))

        logger.error(f"Commitment extraction failed for message {message_id}: {last_error}")
        return None

    async def extract_from_message(
        self,
        message: Message,
        now: Optional[datetime] = None,
    ) -> list[Commitment]:
        """
        Extract commitments from a single message.

        Never raises: oracle failures and bad responses yield [].
        """
        if not self.should_analyze(message):
            return []

        now = now or datetime.now(timezone.utc)
        try:
            response_text = await self._generate_with_retry(self.build_prompt(message), message.id)
            if response_text is None:
                return []
            return self.parse_response(response_text, message, now)
        except Exception as e:
            logger.error(f"Commitment extraction failed for message {message.id}: {e}", exc_info=True)
            return []

    async def extract_from_messages(
        self,
        messages: list[Message],
        now: Optional[datetime] = None,
        batch_size: int = 10,
        pause_seconds: float = 0.0,
    ) -> list[Commitment]:
        """
        Extract commitments from many messages.

        Messages are processed in batches; calls within a batch run
        concurrently and a short pause separates batches.

        Returns:
            Commitments in message order
        """
        now = now or datetime.now(timezone.utc)
        candidates = [m for m in messages if self.should_analyze(m)]
        all_commitments: list[Commitment] = []

        for i in range(0, len(candidates), batch_size):
            batch = candidates[i:i + batch_size]
            results = await asyncio.gather(
                *(self.extract_from_message(m, now) for m in batch)
            )
            for commitments in results:
                all_commitments.extend(commitments)

            if pause_seconds and i + batch_size < len(candidates):
                await asyncio.sleep(pause_seconds)

        return all_commitments
