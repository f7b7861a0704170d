"""Provider for Azure DevOps personal access tokens."""

import base64
import logging
from typing import override

from .types import AuthProvider, AuthenticationError


logger = logging.getLogger(__name__)


class AccessTokenAuthProvider(AuthProvider):
    """Authentication provider for a static personal access token (PAT)."""

    def __init__(self, access_token: str):
        """Initialize the access token provider.

        Args:
            access_token: Azure DevOps personal access token
        """
        if not access_token:
            raise AuthenticationError("Access token authentication requires a token")

        self.access_token = access_token
        logger.info("Initialized access token authentication provider")

    @override
    def get_auth_token(self) -> str:
        return self.access_token

    @override
    def get_auth_header(self) -> dict[str, str]:
        """Build a Basic Authorization header from the PAT.

        Azure DevOps expects an empty user name and the PAT as password.
        """
        credentials = base64.b64encode(f":{self.access_token}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}
