"""
Credential providers.

The push engine never reads credential state from a global; it is handed
a :class:`CredentialProvider` and asks it for the token and user id when
it needs them.  The login flow that writes the credential file lives
outside this package.

Credential file layout (``user_info.json``)::

    {
      "userId": "anon-local-id",
      "auth": {"realUserId": "...", "email": "...", "apiToken": "..."}
    }

Tags:
    usage-spine, auth, credentials, protocol

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from usage_spine.core.errors import ConfigError
from usage_spine.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class CredentialProvider(Protocol):
    """What the push engine needs from the authentication subsystem."""

    def is_authenticated(self) -> bool: ...

    def get_token(self) -> str | None: ...

    def get_user_id(self) -> str | None: ...

    def get_email(self) -> str | None: ...


class StaticCredentialProvider:
    """In-memory credential, for tests and embedding."""

    def __init__(self, token: str | None, user_id: str | None, email: str | None = None) -> None:
        self._token = token
        self._user_id = user_id
        self._email = email

    def is_authenticated(self) -> bool:
        return bool(self._token and self._user_id)

    def get_token(self) -> str | None:
        return self._token

    def get_user_id(self) -> str | None:
        return self._user_id

    def get_email(self) -> str | None:
        return self._email

    def __repr__(self) -> str:
        state = "authenticated" if self.is_authenticated() else "anonymous"
        return f"StaticCredentialProvider(user_id={self._user_id!r}, {state})"


class FileCredentialProvider:
    """Reads the credential written by the login flow.

    The file is read lazily and re-read by :meth:`reload`.  A missing file
    means "not logged in"; a file that exists but is not valid JSON is a
    :class:`ConfigError`.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            logger.debug("credentials_file_missing", path=str(self.path))
            self._data = {}
            return self._data
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Cannot read credentials file {self.path}: {exc}", cause=exc) from exc
        self._data = data if isinstance(data, dict) else {}
        return self._data

    def reload(self) -> None:
        self._data = None

    def _auth(self) -> dict[str, Any]:
        auth = self._load().get("auth")
        return auth if isinstance(auth, dict) else {}

    def is_authenticated(self) -> bool:
        return bool(self.get_token() and self.get_user_id())

    def get_token(self) -> str | None:
        return self._auth().get("apiToken") or None

    def get_user_id(self) -> str | None:
        return self._auth().get("realUserId") or None

    def get_email(self) -> str | None:
        return self._auth().get("email") or None

    def get_local_user_id(self) -> str | None:
        """Anonymous id the ingestion pipeline stamps on local records."""
        return self._load().get("userId") or None

    def __repr__(self) -> str:
        return f"FileCredentialProvider(path={str(self.path)!r})"


__all__ = ["CredentialProvider", "StaticCredentialProvider", "FileCredentialProvider"]
