# ABOUTME: This file defines Pydantic models for API response payloads other than stream snapshots.
# ABOUTME: These models keep the error envelope, pagination and health payloads consistent.

from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    field: str
    issue: str


class ErrorBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    message: str
    details: List[ErrorDetail] = Field(default_factory=list)
    request_id: str = Field("", alias="requestId")


class ErrorResponse(BaseModel):
    error: ErrorBody

    @classmethod
    def build(cls, code: str, message: str, request_id: str, details=None) -> "ErrorResponse":
        return cls(error=ErrorBody(
            code=code,
            message=message,
            details=[ErrorDetail(**d) for d in (details or [])],
            request_id=request_id,
        ))

    def to_content(self) -> dict:
        return self.model_dump(by_alias=True)


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limit: int
    offset: int
    total: int
    has_more: bool = Field(alias="hasMore")


class PublishAck(BaseModel):
    sdp: str
    accepted: int
    timestamp: int


class HealthStatus(BaseModel):
    status: Literal['ok', 'error']


class ReadinessStatus(BaseModel):
    ready: bool
    reader: str
    cache_ttl_sec: float
    last_error: Optional[str] = None
