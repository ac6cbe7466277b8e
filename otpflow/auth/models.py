"""Pydantic models for the authenticated session."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Principal(BaseModel):
    """Authenticated user as stored with the session."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    role: str = ""
    identifier: str = Field(default="", alias="email")
    display_name: str = Field(default="", alias="name")


class Session(BaseModel):
    """Persisted auth state: ``{user, token, isAuthenticated}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str | None = None
    user: Principal | None = None
    is_authenticated: bool = Field(default=False, alias="isAuthenticated")

    @classmethod
    def empty(cls) -> "Session":
        return cls()

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)
