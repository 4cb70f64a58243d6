from datetime import datetime

from pydantic import BaseModel, Field


class User(BaseModel):
    """
    Mock user record.
    Attributes:
        id: Numeric user id.
        name: Display name.
        email: Contact email.
        created_at: Account creation time (UTC).
    """

    id: int = Field(..., examples=[1])
    name: str = Field(..., examples=["Alice"])
    email: str = Field(..., examples=["alice@example.com"])
    created_at: datetime = Field(..., examples=["2025-08-03T10:00:00Z"])


class UserListResponse(BaseModel):
    """All users plus their count."""

    users: list[User]
    count: int
