# ABOUTME: This file defines Pydantic models for the concurrent streams wire format.
# ABOUTME: Numeric fields accept JSON numbers or numeric strings and always serialize as numbers.

import re
from datetime import datetime, timezone
from typing import Annotated, Any, List, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from streams_api.models.responses import Pagination

_INTEGER_RE = re.compile(r"[+-]?\d+")


def parse_flexible_int(value: Any) -> Any:
    """Accept an integer or a numeric string; reject booleans and fractions."""
    if isinstance(value, bool):
        raise PydanticCustomError("int_type", "Input should be an integer, not a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise PydanticCustomError("int_from_float", "Input should be a whole number")
    if isinstance(value, str):
        text = value.strip()
        if _INTEGER_RE.fullmatch(text):
            return int(text)
        raise PydanticCustomError("int_parsing", "Input should be an integer or a numeric string")
    raise PydanticCustomError("int_type", "Input should be an integer or a numeric string")


def parse_epoch_millis(value: Any) -> Any:
    """
    Accept milliseconds since epoch as a number, a numeric string or an
    ISO-8601 datetime string. Anything else is a date format error.
    """
    if isinstance(value, bool):
        raise PydanticCustomError("date_format", "Timestamp must be milliseconds since epoch")
    if isinstance(value, int):
        millis = value
    elif isinstance(value, float) and value.is_integer():
        millis = int(value)
    elif isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
        millis = int(value.strip())
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise PydanticCustomError(
                "date_format",
                "Timestamp must be milliseconds since epoch or an ISO-8601 datetime",
            )
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        millis = int(parsed.timestamp() * 1000)
    else:
        raise PydanticCustomError("date_format", "Timestamp must be milliseconds since epoch")

    if millis < 0:
        raise PydanticCustomError("date_format", "Timestamp must not precede the epoch")
    return millis


def _content_id_to_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


FlexibleInt = Annotated[int, BeforeValidator(parse_flexible_int)]
StreamTotal = Annotated[int, BeforeValidator(parse_flexible_int), Field(ge=0)]
EpochMillis = Annotated[int, BeforeValidator(parse_epoch_millis)]


class Content(BaseModel):
    """Externally defined content descriptor; unknown keys are preserved."""
    model_config = ConfigDict(extra="allow")

    id: Annotated[Optional[str], BeforeValidator(_content_id_to_str)] = None
    title: Optional[str] = None
    series: Optional[str] = None
    channel: Optional[Any] = None
    genre: Optional[str] = None
    cat: Optional[List[str]] = None


class StreamCount(BaseModel):
    region: FlexibleInt
    sstreams: Optional[StreamTotal] = None
    cstreams: Optional[StreamTotal] = None

    @field_validator("region")
    @classmethod
    def _region_is_enumerated(cls, region: int, info: ValidationInfo) -> int:
        valid_regions = (info.context or {}).get("valid_regions")
        if valid_regions is not None and region not in valid_regions:
            raise PydanticCustomError(
                "region_unknown",
                "Unknown region code {region}",
                {"region": region},
            )
        return region

    @model_validator(mode="after")
    def _require_a_stream_total(self) -> "StreamCount":
        if self.sstreams is None and self.cstreams is None:
            raise PydanticCustomError(
                "stream_count_missing",
                "At least one of sstreams or cstreams is required",
            )
        return self


class MediaStreams(BaseModel):
    content: Optional[Content] = None
    eventstart: EpochMillis
    eventend: EpochMillis
    streamcount: Optional[List[StreamCount]] = None

    @model_validator(mode="after")
    def _event_window_is_ordered(self) -> "MediaStreams":
        if self.eventstart >= self.eventend:
            raise PydanticCustomError(
                "event_window",
                "eventstart must be earlier than eventend",
            )
        return self

    @property
    def content_id(self) -> Optional[str]:
        return self.content.id if self.content else None


class StreamsData(BaseModel):
    sdp: Optional[str] = None
    mediastreams: List[MediaStreams]


class StreamsResponse(BaseModel):
    version: str
    timestamp: EpochMillis
    streamsdata: List[StreamsData]
    pagination: Optional[Pagination] = None

    def to_content(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
