# ABOUTME: Request validation for the concurrent streams endpoints and the SDP publish body
# ABOUTME: Translates pydantic validation errors into the API's error codes with field-level details

import json
import logging
from typing import Any, Iterable, Mapping, Sequence, Union

from pydantic import ValidationError

from streams_api.models.errors import ValidationFailedError
from streams_api.models.requests import ContentPath, StreamsQuery
from streams_api.models.streams import StreamsData

logger = logging.getLogger(__name__)

INVALID_JSON = "INVALID_JSON"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
INVALID_FIELD_VALUE = "INVALID_FIELD_VALUE"
INVALID_DATE_FORMAT = "INVALID_DATE_FORMAT"

_MESSAGES = {
    INVALID_JSON: "Request body is not valid JSON.",
    MISSING_REQUIRED_FIELD: "A required field is missing.",
    INVALID_FIELD_VALUE: "One or more fields have invalid values.",
    INVALID_DATE_FORMAT: "One or more timestamps are malformed.",
}

# Leading loc segments FastAPI adds to say where a value came from
_LOCATION_PREFIXES = {"body", "query", "path", "header"}


def classify_error(error: Mapping[str, Any]) -> str:
    """Map a single pydantic error to an API error code."""
    error_type = error.get("type", "")
    if error_type == "json_invalid":
        return INVALID_JSON
    if error_type == "missing":
        return MISSING_REQUIRED_FIELD
    if error_type == "date_format":
        return INVALID_DATE_FORMAT
    return INVALID_FIELD_VALUE


def field_path(loc: Sequence[Union[str, int]], default: str = "body") -> str:
    """Render a pydantic location tuple as a dotted field path."""
    parts = list(loc)
    if parts and parts[0] in _LOCATION_PREFIXES:
        default = parts.pop(0)
    if not parts:
        return default
    return ".".join(str(part) for part in parts)


def build_validation_error(
    errors: Iterable[Mapping[str, Any]],
    default_field: str = "body",
) -> ValidationFailedError:
    """
    Build a ValidationFailedError from pydantic errors.

    The first error decides the code; every error is listed in details.
    """
    errors = list(errors)
    if not errors:
        return ValidationFailedError()

    code = classify_error(errors[0])
    details = [
        {"field": field_path(error.get("loc", ()), default_field), "issue": error.get("msg", "invalid value")}
        for error in errors
    ]
    return ValidationFailedError(_MESSAGES[code], details=details, code=code)


def validate_streams_query(
    params: Mapping[str, str],
    valid_regions: Iterable[int],
) -> StreamsQuery:
    """Validate collection query parameters, including the region enumeration."""
    try:
        query = StreamsQuery.model_validate(dict(params))
    except ValidationError as e:
        raise build_validation_error(e.errors(), default_field="query")

    if query.region is not None and query.region not in set(valid_regions):
        raise ValidationFailedError(
            _MESSAGES[INVALID_FIELD_VALUE],
            details=[{"field": "region", "issue": f"Unknown region code {query.region}"}],
            code=INVALID_FIELD_VALUE,
        )

    return query


def validate_content_id(content_id: str) -> str:
    try:
        return ContentPath(content_id=content_id).content_id
    except ValidationError as e:
        raise ValidationFailedError(
            _MESSAGES[INVALID_FIELD_VALUE],
            details=[{"field": "contentId", "issue": err["msg"]} for err in e.errors()],
            code=INVALID_FIELD_VALUE,
        )


def decode_json_body(raw: bytes) -> Any:
    """Decode a request body, reporting malformed JSON as INVALID_JSON."""
    if not raw.strip():
        raise ValidationFailedError(
            _MESSAGES[INVALID_JSON],
            details=[{"field": "body", "issue": "Request body is empty"}],
            code=INVALID_JSON,
        )
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationFailedError(
            _MESSAGES[INVALID_JSON],
            details=[{"field": "body", "issue": str(e)}],
            code=INVALID_JSON,
        )


def validate_streams_data(payload: Any, valid_regions: Iterable[int]) -> StreamsData:
    """Validate one SDP report against the wire model and region enumeration."""
    try:
        return StreamsData.model_validate(
            payload,
            context={"valid_regions": set(valid_regions)},
        )
    except ValidationError as e:
        error = build_validation_error(e.errors())
        logger.info(
            "Rejected streams data",
            extra={"code": error.code, "error_count": len(error.details)},
        )
        raise error
