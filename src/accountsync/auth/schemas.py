# Device authorization wire schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RegisterClientRequest(_CamelModel):
    """POST /client/register body."""

    client_name: str
    client_type: str = "public"
    scopes: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(
        default_factory=lambda: [DEVICE_CODE_GRANT, "refresh_token"]
    )


class RegisterClientResponse(_CamelModel):
    client_id: str
    client_secret: str
    client_secret_expires_at: int | None = None


class DeviceAuthorizationRequest(_CamelModel):
    """POST /device_authorization body."""

    client_id: str
    client_secret: str
    start_url: str


class DeviceAuthorizationResponse(_CamelModel):
    verification_uri: str
    verification_uri_complete: str | None = None
    user_code: str
    device_code: str
    interval: int | None = None
    expires_in: int | None = None


class TokenRequest(_CamelModel):
    """POST /token body."""

    client_id: str
    client_secret: str
    device_code: str
    grant_type: str = DEVICE_CODE_GRANT


class TokenResponse(_CamelModel):
    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"


class TokenErrorResponse(BaseModel):
    """Error body of the token endpoint (snake_case on the wire)."""

    error: str
    error_description: str | None = None
