"""Credential access for the push engine."""

from usage_spine.auth.credentials import (
    CredentialProvider,
    FileCredentialProvider,
    StaticCredentialProvider,
)

__all__ = ["CredentialProvider", "FileCredentialProvider", "StaticCredentialProvider"]
