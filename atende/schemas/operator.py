from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class OperatorSendRequest(BaseModel):
    tenant_id: UUID
    counterpart: str = Field(min_length=1)
    text: str = Field(min_length=1)


class OperatorSendResponse(BaseModel):
    success: bool
    message: str
    message_id: Optional[UUID] = None


class ReactivateRequest(BaseModel):
    tenant_id: UUID
    counterpart: str = Field(min_length=1)


class ReactivateResponse(BaseModel):
    success: bool
    status: str


class SweepResponse(BaseModel):
    fired: int
