"""Error taxonomy for the Fitbit / FatSecret integration layer.

Every error carries an HTTP ``status_code`` and a stable machine ``code`` so
the API layer can render it without a per-class mapping table.  Adapters
translate raw ``httpx`` failures into these types at their boundary; services
above the adapters only ever see ``IntegrationError`` subclasses.
"""

from __future__ import annotations


class IntegrationError(Exception):
    """Base class for all integration failures."""

    status_code: int = 500
    code: str = "integration_error"

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider


class ConfigurationError(IntegrationError):
    """Required provider credentials are absent. Not retryable."""

    status_code = 500
    code = "configuration_error"

    def __init__(
        self, message: str, provider: str | None = None, key: str | None = None
    ) -> None:
        super().__init__(message, provider)
        self.key = key


class HandshakeError(IntegrationError):
    """The provider refused a request-token or code exchange."""

    status_code = 502
    code = "handshake_failed"


class InvalidStateError(IntegrationError):
    """OAuth2 callback ``state`` does not match a stored authorization state."""

    status_code = 400
    code = "invalid_state"


class InvalidTokenError(IntegrationError):
    """OAuth1 callback ``oauth_token`` does not match a stored request token."""

    status_code = 400
    code = "invalid_token"


class InvalidRedirectError(IntegrationError):
    """Redirect/callback URL is not on the allow-list."""

    status_code = 400
    code = "invalid_redirect"


class TokenRefreshError(IntegrationError):
    """The provider did not accept a refresh-token exchange."""

    status_code = 502
    code = "token_refresh_failed"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message, provider)
        self.status = status

    @property
    def rejected(self) -> bool:
        """True when the provider explicitly rejected the refresh token."""
        return self.status in (400, 401)


class ProviderApiError(IntegrationError):
    """Non-success response (or transport failure) from a provider data endpoint."""

    status_code = 502
    code = "provider_api_error"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message, provider)
        self.status = status
        self.endpoint = endpoint


class NotConnectedError(IntegrationError):
    """No credential row exists for the user and provider."""

    status_code = 409
    code = "not_connected"
