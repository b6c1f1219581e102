"""API request/response schemas for terminal endpoints."""

from pydantic import BaseModel, Field


class CredentialsUpdate(BaseModel):
    """Credentials typed in directly by an operator."""

    api_key: str = Field(min_length=1)
    secret_key: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    group_id: str = Field(min_length=1)
    device_name: str = "DefaultDevice"
    device_user: str = "DefaultUser"
    endpoint: str | None = None


class ConfigFetchRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    config_url: str | None = None


class ConfigView(BaseModel):
    """Stored configuration with secrets masked."""

    configured: bool
    username: str | None = None
    endpoint: str = ""
    device_id: str = ""
    device_name: str = ""
    device_user: str = ""
    group_id: str = ""
    api_key: str = ""


class PaymentStarted(BaseModel):
    order_id: str
    phase: str
