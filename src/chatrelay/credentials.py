"""Credential storage for provider API keys.

Keys are stored by name (e.g. "openai_api_key"). Provider clients load the
key on every request, so a key saved or deleted at runtime takes effect on
the next call without rebuilding the registry.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Abstract key/value store for secrets."""

    @abstractmethod
    def save(self, secret: str, name: str) -> None:
        """Store or replace a secret."""

    @abstractmethod
    def load(self, name: str) -> str | None:
        """Return the stored secret, or None if absent."""

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Remove a secret.

        Returns:
            True if the secret existed
        """

    def has(self, name: str) -> bool:
        return bool(self.load(name))


class InMemoryCredentialStore(CredentialStore):
    """Process-local store, used in tests and for one-off CLI runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._secrets: dict[str, str] = dict(initial or {})

    def save(self, secret: str, name: str) -> None:
        self._secrets[name] = secret

    def load(self, name: str) -> str | None:
        return self._secrets.get(name)

    def delete(self, name: str) -> bool:
        return self._secrets.pop(name, None) is not None


class FileCredentialStore(CredentialStore):
    """JSON file store readable only by the owning user.

    The file is rewritten on every change and its mode forced to 0600.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read credential file {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Credential file {self._path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, secrets: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(secrets, f, indent=2, sort_keys=True)
            os.chmod(self._path, 0o600)
        except OSError as e:
            raise StorageError(f"Cannot write credential file {self._path}: {e}") from e

    def save(self, secret: str, name: str) -> None:
        secrets = self._read()
        secrets[name] = secret
        self._write(secrets)
        logger.info("Saved credential %s", name)

    def load(self, name: str) -> str | None:
        return self._read().get(name)

    def delete(self, name: str) -> bool:
        secrets = self._read()
        if name not in secrets:
            return False
        del secrets[name]
        self._write(secrets)
        logger.info("Deleted credential %s", name)
        return True


class EnvCredentialStore(CredentialStore):
    """Read-only store backed by environment variables.

    A key name maps to its upper-cased variable: "openai_api_key" is read
    from OPENAI_API_KEY.
    """

    def __init__(self, prefix: str = ""):
        self._prefix = prefix

    def variable_for(self, name: str) -> str:
        return f"{self._prefix}{name}".upper()

    def save(self, secret: str, name: str) -> None:
        raise StorageError(f"Environment credentials are read-only; export {self.variable_for(name)} instead")

    def load(self, name: str) -> str | None:
        return os.environ.get(self.variable_for(name)) or None

    def delete(self, name: str) -> bool:
        raise StorageError(f"Environment credentials are read-only; unset {self.variable_for(name)} instead")


class ChainedCredentialStore(CredentialStore):
    """Looks a secret up in several stores, first hit wins.

    Saves and deletes go to the first store only, so an environment
    fallback can sit behind a writable file store.
    """

    def __init__(self, *stores: CredentialStore):
        if not stores:
            raise ValueError("ChainedCredentialStore needs at least one store")
        self._stores = stores

    def save(self, secret: str, name: str) -> None:
        self._stores[0].save(secret, name)

    def load(self, name: str) -> str | None:
        for store in self._stores:
            value = store.load(name)
            if value:
                return value
        return None

    def delete(self, name: str) -> bool:
        return self._stores[0].delete(name)
