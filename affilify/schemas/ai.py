"""
AFFILIFY - AI Endpoint Pydantic Schemas
Validation for the generate-website endpoint.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class GenerateWebsiteRequest(BaseModel):
    """Input payload for AI-powered landing page generation."""

    model_config = {"extra": "forbid"}

    product_url: str = Field(
        ...,
        min_length=8,
        max_length=2048,
        description="Affiliate product page to build the landing page from",
        examples=["https://www.amazon.com/dp/B0EXAMPLE"],
    )
    language: Optional[str] = Field(
        None,
        min_length=2,
        max_length=8,
        description="Target language code, e.g. 'en'",
        examples=["en", "ro"],
    )

    @field_validator("product_url")
    @classmethod
    def check_scheme(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("product_url must be an http(s) URL")
        return v


class GenerateWebsiteResponse(BaseModel):
    success: bool = True
    website: dict[str, Any]
    remaining_ai_requests: int = Field(
        ..., description="AI requests left in the current quota window"
    )
