# lambdas/ingest_transcripts/request_parser.py
from datetime import datetime

from .models import AppSettings


class InvalidRequestError(ValueError):
    """Custom exception for validation errors."""
    pass


def _parse_iso_with_offset(name: str, value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (ValueError, TypeError):
        raise InvalidRequestError(f'Invalid query parameter: {name} must be an ISO-8601 date-time.')
    if parsed.tzinfo is None:
        raise InvalidRequestError(f'Invalid query parameter: {name} must include a UTC offset.')
    return parsed


def parse_and_validate_request(event: dict, settings: AppSettings) -> tuple[str, str, list[str] | None]:
    """
    Parses the API Gateway event and returns the date range to ingest.

    Args:
        event: The API Gateway (or function URL) event dictionary.
        settings: Supplies the default range when the caller omits it.

    Returns:
        A tuple containing from_datetime, to_datetime and an optional list of call ids.

    Raises:
        InvalidRequestError: If validation fails.
    """
    query_params = (event or {}).get('queryStringParameters') or {}

    from_datetime = query_params.get('fromDateTime') or settings.default_from_datetime
    to_datetime = query_params.get('toDateTime') or settings.default_to_datetime

    if _parse_iso_with_offset('fromDateTime', from_datetime) >= _parse_iso_with_offset('toDateTime', to_datetime):
        raise InvalidRequestError('Invalid date range: fromDateTime must be before toDateTime.')

    call_ids = None
    if raw_ids := query_params.get('callIds'):
        call_ids = [cid.strip() for cid in raw_ids.split(',') if cid.strip()] or None

    return from_datetime, to_datetime, call_ids
