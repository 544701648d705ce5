"""
Contact Resolver and Message Grouper.

Resolves raw header strings ("Jane Doe <jane@acme.com>") into canonical
Person records and partitions a user's messages by the other party:
1. User-sent messages belong to the first non-user recipient (to, then cc)
2. Received messages belong to the sender
3. Self-correspondence and automated/noise senders are dropped

A message with several non-user recipients is attributed only to the first
one. Downstream briefings rely on this, so it is kept as-is.
"""
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

from api.services.messages import Message
from config.extraction_config import ExtractionConfig, get_default_config
from config.trajectory_config import COMPANY_CCTLD_PATTERN, COMPANY_TLD_PATTERN

logger = logging.getLogger(__name__)

_ANGLE_EMAIL_RE = re.compile(r"<([^>]+)>")
_DISPLAY_NAME_RE = re.compile(r"^([^<]+)<")


@dataclass(frozen=True)
class Person:
    """A canonical external contact, recomputed on every run."""
    email: str
    domain: str
    name: Optional[str] = None
    company: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "email": self.email,
            "name": self.name,
            "domain": self.domain,
            "company": self.company,
        }


def extract_email(value: str) -> str:
    """
    Extract the address from a header like "John Doe <john@example.com>".

    Returns:
        Lower-cased address (the whole string if no angle brackets)
    """
    if not value:
        return ""
    match = _ANGLE_EMAIL_RE.search(value)
    if match:
        return match.group(1).strip().lower()
    return value.strip().lower()


def extract_name(value: str) -> Optional[str]:
    """Extract the display name from a header, or None if absent."""
    if not value:
        return None
    match = _DISPLAY_NAME_RE.match(value)
    if not match:
        return None
    name = match.group(1).strip().strip('"').strip()
    if not name or "@" in name:
        return None
    return name


def extract_domain(email: str) -> str:
    """Extract the lower-cased domain from an address ('' if none)."""
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].lower()


def extract_company_from_domain(domain: str) -> Optional[str]:
    """
    Infer an organization name from a domain.

    Strips "www." and common TLDs ("acme.io" -> "Acme", "acme.co.uk" -> "Acme").
    """
    if not domain:
        return None
    cleaned = re.sub(r"^www\.", "", domain, flags=re.IGNORECASE)
    cleaned = re.sub(COMPANY_TLD_PATTERN, "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(COMPANY_CCTLD_PATTERN, "", cleaned, flags=re.IGNORECASE)
    if len(cleaned) > 1:
        return cleaned[0].upper() + cleaned[1:]
    return None


def create_person(value: str) -> Person:
    """Create a Person from a raw header string."""
    email = extract_email(value)
    domain = extract_domain(email)
    return Person(
        email=email,
        name=extract_name(value),
        domain=domain,
        company=extract_company_from_domain(domain),
    )


@lru_cache(maxsize=64)
def _compile_patterns(patterns: tuple[str, ...]) -> tuple[re.Pattern, ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Ignoring invalid exclusion pattern {pattern!r}: {e}")
    return tuple(compiled)


def should_exclude_email(email: str, config: Optional[ExtractionConfig] = None) -> bool:
    """
    Check whether an address is noise (automated senders, newsletters, etc.).

    A configured fragment matches if it appears in the local part or the
    domain; a configured pattern matches anywhere in the address.
    """
    config = get_default_config(config)
    lower_email = email.lower()
    local_part = lower_email.split("@", 1)[0]
    domain = extract_domain(lower_email)

    for fragment in config.excluded_domains:
        if fragment in local_part or fragment in domain:
            return True

    for pattern in _compile_patterns(tuple(config.excluded_patterns)):
        if pattern.search(lower_email):
            return True

    return False


def resolve_other_party(message: Message, user_email: str) -> Optional[str]:
    """
    Determine the canonical address of the non-user party of a message.

    Returns:
        Lower-cased address, or None if nothing resolves
    """
    user_email = user_email.lower()
    if message.is_from_user:
        for recipient in [*message.to, *message.cc]:
            address = extract_email(recipient)
            if address and address != user_email:
                return address
        return None
    address = extract_email(message.sender)
    return address or None


def group_messages_by_contact(
    messages: Iterable[Message],
    user_email: str,
    config: Optional[ExtractionConfig] = None,
) -> dict[str, list[Message]]:
    """
    Partition a user's messages by contact address.

    Args:
        messages: All of the user's messages
        user_email: The user's own address (excluded as a contact)
        config: Exclusion settings

    Returns:
        Mapping of contact address -> that contact's messages (input order)
    """
    config = get_default_config(config)
    normalized_user = extract_email(user_email)
    grouped: dict[str, list[Message]] = {}
    dropped = 0

    for message in messages:
        other_party = resolve_other_party(message, normalized_user)
        if (
            not other_party
            or other_party == normalized_user
            or should_exclude_email(other_party, config)
        ):
            dropped += 1
            continue
        grouped.setdefault(other_party, []).append(message)

    logger.debug(f"Grouped messages into {len(grouped)} contacts ({dropped} dropped)")
    return grouped


def resolve_contact_person(contact_email: str, messages: list[Message]) -> Person:
    """
    Build the Person for a contact from their most recent message.

    The freshest header string usually carries the best display name.
    """
    if not messages:
        return create_person(contact_email)

    latest = max(messages, key=lambda m: m.timestamp)
    header = contact_email
    if latest.is_from_user:
        for recipient in [*latest.to, *latest.cc]:
            if extract_email(recipient) == contact_email:
                header = recipient
                break
    else:
        header = latest.sender or contact_email

    person = create_person(header)
    if person.email != contact_email:
        return create_person(contact_email)
    return person
