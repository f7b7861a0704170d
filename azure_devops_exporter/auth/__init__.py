"""Authentication providers for the Azure DevOps API."""

from typing import Literal

AuthMode = Literal["access-token", "service-principal"]

__all__ = [
    "AuthMode",
]
