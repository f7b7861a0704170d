"""Authentication providers for the Azure DevOps API."""

from .types import AuthProvider, AuthenticationError, TokenEndpointUnavailable

from .access_token import AccessTokenAuthProvider
from .service_principal import ServicePrincipalAuthProvider

__all__ = [
    "AccessTokenAuthProvider",
    "ServicePrincipalAuthProvider",
    "AuthProvider",
    "AuthenticationError",
    "TokenEndpointUnavailable",
]
