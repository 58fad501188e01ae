from uuid import UUID

from fastapi import Header

from src.exceptions import NotAuthenticated


class IdentityProvider:
    """Resolves the calling user.

    Sessions are handled by the auth layer in front of this service, which
    forwards the authenticated user's id in the ``X-User-Id`` header.
    """

    def __init__(self):
        pass

    async def current_user_id(self, x_user_id: str | None = Header(default=None)) -> UUID:
        """Return the caller's user id

        Raises:
            NotAuthenticated: The header is missing or not a UUID
        """
        if not x_user_id:
            raise NotAuthenticated()
        try:
            return UUID(x_user_id)
        except ValueError:
            raise NotAuthenticated("Invalid user id")
