"""Authentication service - login, logout and session probe against the backend."""

from pydantic import ValidationError

from jobdash.core.exceptions import AppException, UnauthorizedException, ValidationException
from jobdash.core.http import ApiClient
from jobdash.auth.models import LoginRequest, User


class AuthService:
    """Handles the cookie session endpoints."""

    def __init__(self, client: ApiClient):
        self.client = client

    async def login(self, username: str, password: str) -> User:
        """Exchange credentials for a session cookie, then load the user."""
        try:
            body = LoginRequest(username=username, password=password)
        except ValidationError as e:
            raise ValidationException("Username and password are required") from e

        await self.client.post("/login", json=body.model_dump(), auth=True)
        return await self.me()

    async def logout(self) -> None:
        await self.client.post("/logout", auth=True)

    async def me(self) -> User:
        """Probe the current session. Raises UnauthorizedException on 401."""
        data = await self.client.get("/me", auth=True)
        if not data:
            raise UnauthorizedException("unauthenticated")
        try:
            return User.model_validate(data)
        except ValidationError as e:
            raise AppException("Failed to load session") from e
