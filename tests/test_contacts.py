"""Tests for contact resolution and message grouping."""
from datetime import timedelta

import pytest

from api.services.contacts import (
    create_person,
    extract_company_from_domain,
    extract_email,
    extract_name,
    group_messages_by_contact,
    resolve_contact_person,
    resolve_other_party,
    should_exclude_email,
)
from config.extraction_config import ExtractionConfig


class TestHeaderParsing:
    """Test header string helpers."""

    def test_extracts_email_from_angle_brackets(self):
        assert extract_email("Jane Doe <Jane@Acme.COM>") == "jane@acme.com"

    def test_bare_address_is_lowercased(self):
        assert extract_email("  Jane@Acme.com ") == "jane@acme.com"

    def test_extracts_quoted_name(self):
        assert extract_name('"Jane Doe" <jane@acme.com>') == "Jane Doe"

    def test_no_name_for_bare_address(self):
        assert extract_name("jane@acme.com") is None

    def test_name_that_is_an_address_is_ignored(self):
        assert extract_name("jane@acme.com <jane@acme.com>") is None

    @pytest.mark.parametrize("domain,expected", [
        ("acme.com", "Acme"),
        ("www.acme.io", "Acme"),
        ("acme.co.uk", "Acme"),
        ("globex.ai", "Globex"),
        ("x.com", None),
        ("", None),
    ])
    def test_company_from_domain(self, domain, expected):
        assert extract_company_from_domain(domain) == expected

    def test_create_person(self):
        person = create_person("Jane Doe <jane@acme.com>")
        assert person.email == "jane@acme.com"
        assert person.name == "Jane Doe"
        assert person.domain == "acme.com"
        assert person.company == "Acme"


class TestExclusion:
    """Test noise filtering."""

    @pytest.mark.parametrize("email", [
        "noreply@github.com",
        "no-reply@accounts.google.com",
        "notifications@slack.com",
        "team@newsletter.substack.com",
        "support@vendor.com",
    ])
    def test_default_exclusions(self, email):
        assert should_exclude_email(email, ExtractionConfig())

    def test_real_person_not_excluded(self):
        assert not should_exclude_email("alice@acme.com", ExtractionConfig())

    def test_custom_domain_exclusion(self):
        config = ExtractionConfig().with_overrides(excluded_domains=["acme"])
        assert should_exclude_email("alice@acme.com", config)

    def test_invalid_pattern_is_ignored(self):
        config = ExtractionConfig().with_overrides(excluded_patterns=["[unclosed"])
        assert not should_exclude_email("alice@acme.com", config)


class TestOtherParty:
    """Test which address a message is attributed to."""

    def test_received_message_belongs_to_sender(self, make_message, user_email):
        message = make_message(contact="Alice <alice@acme.com>")
        assert resolve_other_party(message, user_email) == "alice@acme.com"

    def test_sent_message_belongs_to_first_non_user_recipient(self, make_message, user_email):
        message = make_message(contact="bob@globex.io", from_user=True, cc=["carol@initech.com"])
        assert resolve_other_party(message, user_email) == "bob@globex.io"

    def test_sent_message_falls_back_to_cc(self, make_message, user_email):
        message = make_message(contact=user_email, from_user=True, cc=["carol@initech.com"])
        assert resolve_other_party(message, user_email) == "carol@initech.com"

    def test_sent_message_with_only_user_is_unresolved(self, make_message, user_email):
        message = make_message(contact=user_email, from_user=True)
        assert resolve_other_party(message, user_email) is None


class TestGrouping:
    """Test group_messages_by_contact."""

    def test_groups_by_contact(self, make_message, user_email):
        messages = [
            make_message(contact="alice@acme.com"),
            make_message(contact="alice@acme.com", from_user=True),
            make_message(contact="bob@globex.io"),
        ]
        groups = group_messages_by_contact(messages, user_email, ExtractionConfig())

        assert set(groups) == {"alice@acme.com", "bob@globex.io"}
        assert len(groups["alice@acme.com"]) == 2

    def test_multi_recipient_message_goes_to_primary_only(self, make_message, user_email):
        message = make_message(contact="bob@globex.io", from_user=True, cc=["carol@initech.com"])
        groups = group_messages_by_contact([message], user_email, ExtractionConfig())
        assert list(groups) == ["bob@globex.io"]

    def test_drops_self_and_noise(self, make_message, user_email):
        messages = [
            make_message(contact=user_email),
            make_message(contact="noreply@github.com"),
        ]
        assert group_messages_by_contact(messages, user_email, ExtractionConfig()) == {}

    def test_user_email_match_is_case_insensitive(self, make_message):
        message = make_message(contact="alice@acme.com")
        groups = group_messages_by_contact([message], "Me <ME@MyCompany.com>", ExtractionConfig())
        assert list(groups) == ["alice@acme.com"]


class TestResolveContactPerson:
    """Test display-name resolution from the latest message."""

    def test_uses_latest_header(self, make_message, now):
        messages = [
            make_message(contact="A. <alice@acme.com>", timestamp=now - timedelta(days=10)),
            make_message(contact="Alice Smith <alice@acme.com>", timestamp=now - timedelta(days=1)),
        ]
        person = resolve_contact_person("alice@acme.com", messages)
        assert person.name == "Alice Smith"
        assert person.company == "Acme"

    def test_latest_sent_message_uses_recipient_header(self, make_message, now):
        messages = [
            make_message(contact="Alice <alice@acme.com>", timestamp=now - timedelta(days=5)),
            make_message(contact="Alice Smith <alice@acme.com>", from_user=True, timestamp=now),
        ]
        person = resolve_contact_person("alice@acme.com", messages)
        assert person.name == "Alice Smith"

    def test_no_messages(self):
        person = resolve_contact_person("alice@acme.com", [])
        assert person.email == "alice@acme.com"
        assert person.name is None
