"""Credential store adapters.

The core reads secrets only through the ``CredentialStore`` protocol:
``get_secret``, ``set_secret`` and ``delete_secret``. A store is the single
authoritative source of which providers are configured; nothing else keeps a
copy of a key.

Two implementations ship here:
- InMemoryCredentialStore for tests and for seeding from environment variables
- KeyringCredentialStore backed by the operating system keyring
"""

import os
from typing import Protocol

import keyring
import structlog
from keyring.errors import KeyringError, PasswordDeleteError

from deepticker.errors import CredentialStoreError

logger = structlog.get_logger(__name__)

# Credential ids understood by the core, mapped to the environment variables
# that may seed them.
CREDENTIAL_ENV_VARS: dict[str, str] = {
    "alpha_vantage": "ALPHA_VANTAGE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "qwen": "QWEN_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

_PLACEHOLDER_PREFIXES = ("REPLACE_", "sk-REPLACE", "your_")


def is_usable_secret(value: str | None) -> bool:
    """Return True when a stored secret looks like a real key.

    Empty strings and template placeholders such as ``REPLACE_ME`` or
    ``your_api_key`` count as missing.
    """
    if not value or not value.strip():
        return False
    secret = value.strip()
    if secret.startswith(_PLACEHOLDER_PREFIXES):
        return False
    return "PLACEHOLDER" not in secret


class CredentialStore(Protocol):
    """Key-value secret store keyed by provider identifier."""

    def get_secret(self, credential_id: str) -> str | None:
        ...

    def set_secret(self, credential_id: str, value: str) -> None:
        ...

    def delete_secret(self, credential_id: str) -> None:
        ...


class InMemoryCredentialStore:
    """Process-local credential store.

    Example:
        store = InMemoryCredentialStore({"deepseek": "sk-..."})
        store.get_secret("deepseek")
    """

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(secrets or {})

    @classmethod
    def from_env(cls) -> "InMemoryCredentialStore":
        """Seed a store from the well-known ``*_API_KEY`` environment variables."""
        secrets = {
            credential_id: os.environ[env_var]
            for credential_id, env_var in CREDENTIAL_ENV_VARS.items()
            if os.environ.get(env_var)
        }
        return cls(secrets)

    def get_secret(self, credential_id: str) -> str | None:
        return self._secrets.get(credential_id)

    def set_secret(self, credential_id: str, value: str) -> None:
        self._secrets[credential_id] = value

    def delete_secret(self, credential_id: str) -> None:
        self._secrets.pop(credential_id, None)


class KeyringCredentialStore:
    """Credential store backed by the OS keyring.

    Each credential id is stored as its own keyring account under one service
    name. Keyring backend failures surface as ``CredentialStoreError``.
    """

    def __init__(self, service_name: str = "deepticker") -> None:
        self.service_name = service_name
        self._logger = logger.bind(component="keyring_store", service=service_name)

    def get_secret(self, credential_id: str) -> str | None:
        try:
            return keyring.get_password(self.service_name, credential_id)
        except KeyringError as e:
            self._logger.error("keyring_read_failed", credential_id=credential_id, error=str(e))
            raise CredentialStoreError(
                f"Failed to read credential '{credential_id}' from keyring: {e}",
                details={"credential_id": credential_id},
            ) from e

    def set_secret(self, credential_id: str, value: str) -> None:
        try:
            keyring.set_password(self.service_name, credential_id, value)
        except KeyringError as e:
            self._logger.error("keyring_write_failed", credential_id=credential_id, error=str(e))
            raise CredentialStoreError(
                f"Failed to store credential '{credential_id}' in keyring: {e}",
                details={"credential_id": credential_id},
            ) from e
        self._logger.info("credential_stored", credential_id=credential_id)

    def delete_secret(self, credential_id: str) -> None:
        try:
            keyring.delete_password(self.service_name, credential_id)
        except PasswordDeleteError:
            # Already absent.
            return
        except KeyringError as e:
            self._logger.error("keyring_delete_failed", credential_id=credential_id, error=str(e))
            raise CredentialStoreError(
                f"Failed to delete credential '{credential_id}' from keyring: {e}",
                details={"credential_id": credential_id},
            ) from e
        self._logger.info("credential_deleted", credential_id=credential_id)
