"""Authentication provider factory."""

import logging

from azure_devops_exporter.settings import ExporterSettings

from .providers import (
    AccessTokenAuthProvider,
    AuthProvider,
    ServicePrincipalAuthProvider,
)


logger = logging.getLogger(__name__)


def get_auth_provider(settings: ExporterSettings) -> AuthProvider:
    """Get the authentication provider for the configured mode.

    A personal access token takes precedence over service principal
    credentials.

    Args:
        settings: Validated exporter settings

    Returns:
        AuthProvider: The authentication provider

    Raises:
        AuthenticationError: If the provider cannot be initialized
    """
    if settings.auth_mode == "access-token":
        logger.info("Using access token authentication mode")
        return AccessTokenAuthProvider(settings.azure_devops.access_token)

    logger.info("Using service principal authentication mode")
    return ServicePrincipalAuthProvider(
        tenant_id=settings.azure.tenant_id,
        client_id=settings.azure.client_id,
        client_secret=settings.azure.client_secret,
    )
