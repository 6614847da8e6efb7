# ABOUTME: This file defines Pydantic models for API request parameters.
# ABOUTME: Query parameters for the concurrent streams endpoints are validated here before any upstream read.

from typing import Annotated, Optional
from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from streams_api.config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from streams_api.models.streams import FlexibleInt

Identifier = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]


class StreamsQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    requestor: Optional[Identifier] = None
    sdp: Optional[Identifier] = None
    region: Optional[FlexibleInt] = None
    limit: Annotated[FlexibleInt, Field(ge=0, le=MAX_PAGE_LIMIT)] = DEFAULT_PAGE_LIMIT
    offset: Annotated[FlexibleInt, Field(ge=0)] = 0


class ContentPath(BaseModel):
    content_id: Identifier
