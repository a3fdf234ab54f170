from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, field_validator

EXPIRY_MARGIN = timedelta(seconds=60)


class TokenResponse(BaseModel):
    """Body returned by the identity provider's token endpoint."""

    access_token: str
    expires_in: int
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str = ""
    id_token: str | None = None


class TokenStore(BaseModel):
    access_token: str
    refresh_token: str | None = None
    scope: set[str] = set()
    expires_at: datetime
    token_type: str = "Bearer"
    id_token: str | None = None

    @field_validator("expires_at")
    @classmethod
    def _normalize_to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def from_response(cls, response: TokenResponse, issued_at: datetime) -> "TokenStore":
        return cls(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            scope=set(response.scope.split()),
            expires_at=issued_at + timedelta(seconds=response.expires_in),
            token_type=response.token_type,
            id_token=response.id_token,
        )

    def is_expiring(self, now: datetime, margin: timedelta = EXPIRY_MARGIN) -> bool:
        return now + margin >= self.expires_at

    def seconds_remaining(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()

    def apply_refresh(self, response: TokenResponse, issued_at: datetime) -> None:
        """Update in place from a refresh-grant response.

        The identity provider may omit the refresh token or the scope on refresh;
        in that case the previous values are kept.
        """
        self.access_token = response.access_token
        self.expires_at = issued_at + timedelta(seconds=response.expires_in)
        self.token_type = response.token_type
        if response.refresh_token:
            self.refresh_token = response.refresh_token
        if response.scope:
            self.scope = set(response.scope.split())
        if response.id_token:
            self.id_token = response.id_token
