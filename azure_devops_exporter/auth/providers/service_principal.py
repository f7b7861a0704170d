"""Providers for Entra ID service principal auth."""

import json
import logging
import threading
import time
from typing import override

import jwt
import requests

from azure_devops_exporter import constants

from azure_devops_exporter.auth.providers.types import (
    AuthProvider,
    AuthenticationError,
    TokenEndpointUnavailable,
)


logger = logging.getLogger(__name__)


def token_expiry(access_token: str, expires_in: int | None, now: float) -> float:
    """Work out when an access token expires, as a unix timestamp.

    Prefers the `expires_in` value of the token response and falls back to the
    `exp` claim of the JWT itself.
    """
    if expires_in is not None:
        return now + int(expires_in)
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.DecodeError as e:
        raise AuthenticationError("Access token has no expiry information") from e
    if "exp" not in claims:
        raise AuthenticationError("Access token has no expiry information")
    return float(claims["exp"])


class ServicePrincipalAuthProvider(AuthProvider):
    """Auth provider for Entra ID service principals (client credentials).

    The acquired token is cached and renewed once it gets within
    `refresh_margin` seconds of its expiry. Safe to share between threads.
    """

    tenant_id: str
    client_id: str
    client_secret: str

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        refresh_margin: int = constants.ACCESS_TOKEN_REFRESH_MARGIN,
        clock=time.time,
    ):
        """
        Args:
            tenant_id: Entra ID tenant of the service principal
            client_id: Application (client) id of the service principal
            client_secret: Client secret of the service principal
            refresh_margin: Seconds before expiry at which the token is renewed
            clock: Source of the current unix time
        """
        if not tenant_id or not client_id or not client_secret:
            raise AuthenticationError(
                "Service principal authentication requires tenant id, client id and client secret"
            )
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._access_token: str | None = None
        self._expires_at = 0.0
        logger.info(
            "Initialized service principal authentication provider (client id: %s)",
            client_id,
        )

    def _request_token(self) -> tuple[str, float]:
        endpoint = constants.AZURE_AUTHORITY_URL.format(tenant_id=self.tenant_id)
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": constants.AZURE_DEVOPS_RESOURCE_SCOPE,
        }

        try:
            response = requests.post(
                endpoint, data=data, timeout=constants.ACCESS_TOKEN_GENERATION_TIMEOUT
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TokenEndpointUnavailable(f"Token request failed: {e}") from e
        except requests.RequestException as e:
            raise AuthenticationError(f"Token request failed: {e}") from e

        if response.status_code != requests.codes.ok:
            raise AuthenticationError(
                f"Got {response.status_code} response from token endpoint: {response.text}"
            )

        try:
            body = response.json()
            access_token = body["access_token"]
        except json.JSONDecodeError:
            raise AuthenticationError(
                "Token endpoint response is not JSON. "
                f"Response: {response.status_code}: {response.text}"
            )
        except KeyError:
            raise AuthenticationError(
                f"Token endpoint response has no access token, got {response.text}"
            )

        return access_token, token_expiry(
            access_token, body.get("expires_in"), self._clock()
        )

    @override
    def get_auth_token(self) -> str:
        """Get a valid access token, acquiring a new one when needed.

        Returns:
            str: Bearer token for the Azure DevOps resource

        Raises:
            AuthenticationError: If token cannot be retrieved
        """
        with self._lock:
            if (
                self._access_token is None
                or self._clock() >= self._expires_at - self.refresh_margin
            ):
                logger.debug("Acquiring service principal access token")
                self._access_token, self._expires_at = self._request_token()
            return self._access_token
