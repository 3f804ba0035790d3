"""Provider adapters for Groofit integrations.

Each adapter handles:
- OAuth handshake and (for OAuth2) token refresh
- Authenticated reads against the provider's REST API
- Normalizing provider JSON into Groofit domain records

Available adapters:
    FitbitAdapter    Fitbit Web API (OAuth2 authorization code + refresh)
    FatSecretAdapter FatSecret Platform API (OAuth 1.0a + OAuth2 client credentials)
"""

from src.integrations.adapters.fatsecret import FatSecretAdapter
from src.integrations.adapters.fitbit import FitbitAdapter

__all__ = [
    "FatSecretAdapter",
    "FitbitAdapter",
]
