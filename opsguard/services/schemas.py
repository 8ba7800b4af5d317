"""
Console Backend Schemas

Pydantic models for the identity, step-up and audit collaborator contracts.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class UserIdentity(BaseModel):
    """Identity fields of a user record. Claim containers are left to the resolver."""

    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "user_id", "_id"))
    email: Optional[str] = None
    display_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("display_name", "full_name", "name")
    )

    class Config:
        extra = "ignore"
        populate_by_name = True
        coerce_numbers_to_str = True


class ReauthRequest(BaseModel):
    """Step-up challenge request."""

    password: str


class ReauthResult(BaseModel):
    """Step-up challenge response. ``success`` alone is sufficient proof."""

    success: bool = False
    token: Optional[str] = Field(None, validation_alias=AliasChoices("token", "step_up_token"))
    error: Optional[str] = None

    class Config:
        extra = "ignore"
        populate_by_name = True

    @classmethod
    def from_response(cls, payload: Any) -> "ReauthResult":
        """Accept a bare result or one wrapped in a ``data`` envelope."""
        if isinstance(payload, ReauthResult):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            return cls(success=False, error="Malformed step-up response")
        return cls.model_validate(payload)
