"""Publish-credential resolution.

The Publisher receives a :class:`SecretRef` (a key plus a resolver, never a
value) and resolves it inside ``Publisher.publish`` on every call, so a
rotated credential is picked up by the next Run without a restart. The
resolved value travels as :class:`SecretValue`, which renders as
``[REDACTED]`` and is masked by the logging processors.

Lookup order of :func:`default_resolver`::

    SecretRef("PUBLISH_SECRET").resolve()
        │
        ├── env  PUBLISH_SECRET
        ├── env  HARVEST_SECRET_PUBLISH_SECRET
        └── file <secrets_dir>/PUBLISH_SECRET    (only when secrets_dir is set)
        │
        ▼
    SecretValue  or  MissingSecretError (lists the backends tried)

Examples:
    >>> ref = SecretRef("PUBLISH_SECRET", SecretsResolver([DictSecretBackend({"PUBLISH_SECRET": "s3cr3t"})]))
    >>> str(ref.resolve())
    '[REDACTED]'
"""

from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

PUBLISH_SECRET_KEY = "PUBLISH_SECRET"
SECRET_ENV_PREFIX = "HARVEST_SECRET_"
_MASKED = "[REDACTED]"


class MissingSecretError(LookupError):
    """No backend holds the requested key."""

    def __init__(self, key: str, tried_backends: Iterable[str] = ()):
        self.key = key
        self.tried_backends = list(tried_backends)
        detail = f" (tried: {', '.join(self.tried_backends)})" if self.tried_backends else ""
        super().__init__(f"secret {key!r} is not available{detail}")


class SecretValue:
    """A resolved credential that refuses to print itself."""

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        return self._value

    def __str__(self) -> str:
        return _MASKED

    def __repr__(self) -> str:
        return f"SecretValue({_MASKED!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SecretValue) and other._value == self._value

    def __hash__(self) -> int:
        return hash((SecretValue, self._value))

    def __bool__(self) -> bool:
        return self._value != ""


class SecretBackend(ABC):
    """One place a credential may live."""

    @abstractmethod
    def get(self, name: str) -> str | None:
        """The value for *name*, or None when this backend doesn't hold it."""


class EnvSecretBackend(SecretBackend):
    """Environment variables: ``<KEY>`` first, then ``<prefix><KEY>``."""

    def __init__(self, prefix: str = SECRET_ENV_PREFIX):
        self.prefix = prefix

    def get(self, name: str) -> str | None:
        key = name.upper()
        for variable in (key, f"{self.prefix}{key}"):
            if variable in os.environ:
                return os.environ[variable]
        return None


class FileSecretBackend(SecretBackend):
    """Mounted secret files, one file per key, re-read on every lookup."""

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)

    def get(self, name: str) -> str | None:
        path = self.secrets_dir / name
        try:
            return path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, IsADirectoryError, PermissionError):
            return None


class DictSecretBackend(SecretBackend):
    """Mutable in-memory backend (tests, rotation scenarios)."""

    def __init__(self, secrets: Mapping[str, str] | None = None):
        self._secrets = dict(secrets or {})
        self._lock = threading.Lock()

    def get(self, name: str) -> str | None:
        with self._lock:
            return self._secrets.get(name)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._secrets[key] = value


class SecretsResolver:
    """Asks each backend in turn; the first hit wins."""

    def __init__(self, backends: Iterable[SecretBackend] | None = None):
        self.backends: list[SecretBackend] = [EnvSecretBackend()] if backends is None else list(backends)

    def resolve(self, key: str) -> SecretValue:
        """Raises :class:`MissingSecretError` when no backend holds *key*."""
        for backend in self.backends:
            value = backend.get(key)
            if value is not None:
                return SecretValue(value)
        raise MissingSecretError(key, (type(b).__name__ for b in self.backends))


@dataclass(frozen=True)
class SecretRef:
    """Where to find the publish credential. Holds the key, never the value."""

    key: str = PUBLISH_SECRET_KEY
    resolver: SecretsResolver | None = None

    def resolve(self) -> SecretValue:
        return (self.resolver or SecretsResolver()).resolve(self.key)

    def __repr__(self) -> str:
        return f"SecretRef(key={self.key!r})"


def default_resolver(secrets_dir: str | Path | None = None) -> SecretsResolver:
    """Environment first, then mounted files when *secrets_dir* is set."""
    backends: list[SecretBackend] = [EnvSecretBackend()]
    if secrets_dir:
        backends.append(FileSecretBackend(secrets_dir))
    return SecretsResolver(backends)
