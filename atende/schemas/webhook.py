from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class GatewayEvent(BaseModel):
    """Push event from the messaging gateway (Evolution API)."""

    event: Optional[str] = None
    instance: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("instance", "instanceName", "instance_name"),
    )
    data: Optional[Any] = None


class WebhookResponse(BaseModel):
    ok: bool = True
    processed: int = 0
