from atende.schemas.operator import (
    OperatorSendRequest,
    OperatorSendResponse,
    ReactivateRequest,
    ReactivateResponse,
    SweepResponse,
)
from atende.schemas.webhook import GatewayEvent, WebhookResponse

__all__ = [
    "GatewayEvent",
    "WebhookResponse",
    "OperatorSendRequest",
    "OperatorSendResponse",
    "ReactivateRequest",
    "ReactivateResponse",
    "SweepResponse",
]
