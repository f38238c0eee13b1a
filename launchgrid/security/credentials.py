"""Per-provider AI credentials and the opaque encryption primitive."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, SecretStr

from ..contracts import ProviderId
from ..errors import ConfigurationError, ValidationError


class CredentialCipher:
    """Encrypts and decrypts stored secrets with a Fernet key."""

    def __init__(self, key: Union[str, bytes]) -> None:
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("Invalid encryption key") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise ConfigurationError("Stored credential could not be decrypted") from exc


def parse_provider_id(name: str) -> ProviderId:
    """Accept ``gemini`` as well as the stored ``gemini_key`` form."""
    key = name[: -len("_key")] if name.endswith("_key") else name
    try:
        return ProviderId(key)
    except ValueError:
        raise ValidationError(
            f"Unknown AI provider: {name}", details={"provider": name}
        ) from None


class ProviderCredentials(BaseModel):
    """Typed mapping from provider id to its API key."""

    keys: Dict[ProviderId, SecretStr] = Field(default_factory=dict)

    @classmethod
    def from_mapping(
        cls,
        raw: Optional[Mapping[str, Optional[str]]],
        cipher: Optional[CredentialCipher] = None,
    ) -> "ProviderCredentials":
        keys: Dict[ProviderId, SecretStr] = {}
        for name, value in (raw or {}).items():
            provider = parse_provider_id(name)
            if not value:
                continue
            plaintext = cipher.decrypt(value) if cipher is not None else value
            keys[provider] = SecretStr(plaintext)
        return cls(keys=keys)

    def get(self, provider: ProviderId) -> Optional[str]:
        secret = self.keys.get(provider)
        return secret.get_secret_value() if secret is not None else None

    def require(self, provider: ProviderId) -> str:
        value = self.get(provider)
        if value is None:
            raise ConfigurationError(
                f"No API key configured for {provider.value}",
                details={"provider": provider.value},
            )
        return value

    def has(self, provider: ProviderId) -> bool:
        return provider in self.keys
