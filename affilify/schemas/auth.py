"""
AFFILIFY - Auth Endpoint Pydantic Schemas
"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LoginRequest(BaseModel):
    """Email/password credentials."""

    model_config = {"extra": "forbid"}

    email: str = Field(
        ...,
        min_length=3,
        max_length=255,
        examples=["founder@affilify.eu"],
    )
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email format")
        return v


class PrincipalResponse(BaseModel):
    id: str
    email: str
    plan: str
    verified: bool
    full_name: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token lifetime in seconds")
    user: PrincipalResponse
