import pytest

from launchgrid.contracts import ProviderId
from launchgrid.errors import ConfigurationError, ValidationError
from launchgrid.security.credentials import (
    CredentialCipher,
    ProviderCredentials,
    parse_provider_id,
)


def test_cipher_round_trip_and_bad_token():
    cipher = CredentialCipher(CredentialCipher.generate_key())
    token = cipher.encrypt("sk-secret")
    assert token != "sk-secret"
    assert cipher.decrypt(token) == "sk-secret"

    other = CredentialCipher(CredentialCipher.generate_key())
    with pytest.raises(ConfigurationError):
        other.decrypt(token)


def test_invalid_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        CredentialCipher("not-a-fernet-key")


def test_parse_provider_id_accepts_stored_names():
    assert parse_provider_id("gemini") == ProviderId.GEMINI
    assert parse_provider_id("openai_key") == ProviderId.OPENAI
    with pytest.raises(ValidationError):
        parse_provider_id("cohere_key")


def test_credentials_from_encrypted_mapping():
    cipher = CredentialCipher(CredentialCipher.generate_key())
    credentials = ProviderCredentials.from_mapping(
        {"gemini_key": cipher.encrypt("g-123"), "openai_key": None}, cipher
    )

    assert credentials.get(ProviderId.GEMINI) == "g-123"
    assert credentials.has(ProviderId.GEMINI)
    assert not credentials.has(ProviderId.OPENAI)
    assert credentials.get(ProviderId.OPENAI) is None
    with pytest.raises(ConfigurationError):
        credentials.require(ProviderId.OPENAI)


def test_credentials_are_not_leaked_in_repr():
    credentials = ProviderCredentials.from_mapping({"anthropic": "a-secret"})
    assert "a-secret" not in repr(credentials)
    assert credentials.require(ProviderId.ANTHROPIC) == "a-secret"
