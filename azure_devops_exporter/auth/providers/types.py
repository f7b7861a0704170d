class AuthenticationError(Exception):
    """Exception raised when authentication fails."""


class TokenEndpointUnavailable(AuthenticationError):
    """Exception raised when the token endpoint cannot be reached.

    Unlike a rejected credential this is transient; the API client retries it
    like any other network failure.
    """


class AuthProvider:
    """Base class for authentication providers."""

    def get_auth_token(self) -> str:
        """Get authentication token.

        Returns:
            str: Authentication token

        Raises:
            AuthenticationError: If token cannot be retrieved
        """
        raise NotImplementedError

    def get_auth_header(self) -> dict[str, str]:
        """Get the Authorization header for an outbound request.

        Returns:
            dict[str, str]: Header name to value

        Raises:
            AuthenticationError: If token cannot be retrieved
        """
        return {"Authorization": f"Bearer {self.get_auth_token()}"}
