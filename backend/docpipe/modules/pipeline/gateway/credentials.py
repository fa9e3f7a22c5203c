"""Provider credential lookup by endpoint host."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import urlparse

from docpipe.core.config import settings
from docpipe.core.errors import MissingCredential

REDACTED = "[REDACTED]"


class CredentialProvider:
    """Resolves the API key for a capability endpoint.

    Keys come from settings (environment) only and are matched against the
    endpoint hostname, either exactly or as a parent domain.
    """

    def __init__(self, keys_by_host: Mapping[str, str] | None = None) -> None:
        self._keys = dict(keys_by_host if keys_by_host is not None else settings.provider_credentials)

    def for_endpoint(self, endpoint: str) -> str:
        host = (urlparse(endpoint).hostname or "").lower()
        for known_host, key in self._keys.items():
            known = known_host.lower()
            if host == known or host.endswith(f".{known}"):
                if key:
                    return key
                break
        raise MissingCredential(endpoint)


def redact(text: str, secret: str | None) -> str:
    if not secret:
        return text
    return text.replace(secret, REDACTED)
