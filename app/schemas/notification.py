from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DeviceTokenRegister(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=1, max_length=500)


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool


class SendNotificationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=1000)
    data: Dict[str, str] = Field(default_factory=dict)
    user_ids: List[str] = Field(default_factory=list)
    send_to_all: bool = False

    @field_validator("title", "body")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title and body are required")
        return value

    @model_validator(mode="after")
    def validate_audience(self):
        if not self.send_to_all and not self.user_ids:
            raise ValueError("Provide user_ids or set send_to_all")
        return self


class NotificationResult(BaseModel):
    success_count: int = 0
    failure_count: int = 0
    failed_tokens: List[str] = Field(default_factory=list)
    error: Optional[str] = None
