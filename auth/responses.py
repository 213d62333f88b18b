"""
auth/responses.py -- Response models returned by AuthService.

These Pydantic v2 models are the contract with the (excluded) HTTP layer.
They are separate from the dataclasses in auth/models.py, which own the
internal domain representation; AuthService maps between the two.
"""

from pydantic import BaseModel, ConfigDict


class UserSummary(BaseModel):
    """Identity returned alongside every token pair."""

    id: str
    email: str
    username: str
    display_name: str
    is_verified: bool


class AuthResponse(BaseModel):
    """Token pair plus user summary.

    expires_in describes the access token only, in seconds, and is read from
    the same setting used to sign it.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserSummary


class MessageResponse(BaseModel):
    message: str
