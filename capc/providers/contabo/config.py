"""Contabo provider configuration.

Immutable configuration dataclass for the Contabo API adapter.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass

from capc.core.exceptions import ConfigurationError

if typing.TYPE_CHECKING:
    from capc.providers.contabo.provider import ContaboProvider

CONTABO_API_BASE = "https://api.contabo.com/v1"
CONTABO_AUTH_URL = "https://auth.contabo.com/auth/realms/contabo/protocol/openid-connect/token"


@dataclass(frozen=True, slots=True)
class Contabo:
    """Contabo API credentials and endpoints.

    Credentials fall back to CONTABO_CLIENT_ID, CONTABO_CLIENT_SECRET,
    CONTABO_API_USER and CONTABO_API_PASSWORD (see ``capc.config``).

    Example:
        >>> config = Contabo(client_id="...", client_secret="...",
        ...                  api_user="me@example.com", api_password="...")

    Args:
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret.
        api_user: API user (account e-mail).
        api_password: API password.
        api_url: REST API base URL.
        auth_url: OAuth2 token endpoint.
        request_timeout: Per-request timeout in seconds. Default: 30.
    """

    client_id: str = ""
    client_secret: str = ""
    api_user: str = ""
    api_password: str = ""
    api_url: str = CONTABO_API_BASE
    auth_url: str = CONTABO_AUTH_URL
    request_timeout: int = 30

    def validate(self) -> None:
        missing = [
            name for name in ("client_id", "client_secret", "api_user", "api_password")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Contabo credentials missing: {', '.join(missing)}")

    async def create_provider(self) -> ContaboProvider:
        from capc.providers.contabo.provider import ContaboProvider

        self.validate()
        return ContaboProvider(self)
