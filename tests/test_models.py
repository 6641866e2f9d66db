"""Tests for consent status parsing, transitions, errors and configuration."""

from __future__ import annotations

import pytest

from fedconsent.config import ConsentConfig, get_config, update_config
from fedconsent.consent.models import (
    ALLOWED_TRANSITIONS,
    AttributeDefinition,
    ConsentStatus,
    is_transition_allowed,
)
from fedconsent.constants import CONSENT_ATTRIBUTE_NAMESPACES, NS_USER_ATTR
from fedconsent.exceptions import (
    ConsentHubNotFoundError,
    ConsistencyError,
    ErrorKind,
    InvalidConsentStatusError,
    StorageError,
)


class TestConsentStatus:
    """Test the consent state machine definition."""

    def test_parse_is_case_insensitive(self) -> None:
        assert ConsentStatus.parse("granted") is ConsentStatus.GRANTED
        assert ConsentStatus.parse(" Revoked ") is ConsentStatus.REVOKED
        assert ConsentStatus.parse(ConsentStatus.UNSIGNED) is ConsentStatus.UNSIGNED

    def test_parse_rejects_unknown_literal(self) -> None:
        with pytest.raises(InvalidConsentStatusError) as exc_info:
            ConsentStatus.parse("approved")
        assert exc_info.value.details["requested_status"] == "approved"

    def test_nothing_returns_to_unsigned(self) -> None:
        assert all(ConsentStatus.UNSIGNED not in targets for targets in ALLOWED_TRANSITIONS.values())

    def test_decided_statuses_swap(self) -> None:
        assert is_transition_allowed(ConsentStatus.GRANTED, ConsentStatus.REVOKED)
        assert is_transition_allowed(ConsentStatus.REVOKED, ConsentStatus.GRANTED)
        assert not is_transition_allowed(ConsentStatus.GRANTED, ConsentStatus.GRANTED)


class TestAttributeDefinition:

    def test_name_and_key(self) -> None:
        attr = AttributeDefinition(id=7, namespace=NS_USER_ATTR, friendly_name="preferredMail")

        assert attr.name == f"{NS_USER_ATTR}:preferredMail"
        assert attr.key == (NS_USER_ATTR, "preferredMail")


class TestErrors:
    """Test the error taxonomy exposed to callers."""

    def test_expected_kinds(self) -> None:
        assert ConsentHubNotFoundError(consent_hub_id=1).expected
        assert not ConsistencyError("two rows").expected
        assert StorageError(reason="locked").kind == ErrorKind.INFRASTRUCTURE

    def test_to_dict(self) -> None:
        error = ConsentHubNotFoundError(name="wiki")

        assert error.to_dict() == {
            "error": "CONSENT_HUB_NOT_FOUND",
            "kind": "not_found",
            "message": "Consent hub does not exist",
            "details": {"name": "wiki"},
        }


class TestConsentConfig:

    def test_defaults(self) -> None:
        config = ConsentConfig()

        assert config.consent_attribute_namespaces == CONSENT_ATTRIBUTE_NAMESPACES
        assert config.enforce_consents_default is True

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FEDCONSENT_LOCK_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("FEDCONSENT_DEFAULT_ACTOR", "perun-engine")

        config = ConsentConfig()

        assert config.lock_timeout_seconds == 2.5
        assert config.default_actor == "perun-engine"

    def test_update_config_overrides_known_fields(self) -> None:
        original = get_config().default_actor
        try:
            config = update_config(default_actor="registrar", not_a_field=1)

            assert config is get_config()
            assert config.default_actor == "registrar"
            assert not hasattr(config, "not_a_field")
        finally:
            update_config(default_actor=original)
