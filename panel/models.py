"""Wire and result models for the panel layer."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from roster.types import Change


class ChangeNotification(BaseModel):
    """What the notify trigger publishes for every row change."""

    model_config = {"extra": "ignore"}

    table: str
    type: Literal["INSERT", "UPDATE", "DELETE"]
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None

    def to_change(self) -> Change:
        return Change(
            table=self.table,
            type=self.type,
            record=self.record or {},
            old_record=self.old_record or {},
        )


class Session(BaseModel):
    """An authenticated session as returned by the auth service."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_at: int | None = None  # unix seconds
    user_id: str | None = None
    email: str | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        """True while the access token has not expired."""
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        current = now or datetime.now(UTC)
        return current.timestamp() < self.expires_at


class Credentials(BaseModel):
    """What the user supplies to sign up or sign in."""

    model_config = {"extra": "forbid"}

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)


class MutationResult(BaseModel):
    """
    Outcome of one coordinator operation.

    Failures are reported here and on the status channel, never raised.
    """

    ok: bool
    entity: dict[str, Any] | None = None
    entities: list[dict[str, Any]] | None = None
    message: str | None = None
    error: str | None = None
