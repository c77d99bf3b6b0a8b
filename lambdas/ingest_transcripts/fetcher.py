# lambdas/ingest_transcripts/fetcher.py
import base64
from typing import Iterator, List, Optional

import requests
from pydantic import ValidationError

from .models import AppSettings, SchemaMismatchError, TranscriptPage, TranscriptRecord

TRANSCRIPT_PATH = "/v2/calls/transcript"


class TranscriptFetchError(RuntimeError):
    """A page request to the transcript source failed. Fatal for the run."""
    pass


def build_auth_header(access_key: str, access_key_secret: str) -> str:
    token = base64.b64encode(f"{access_key}:{access_key_secret}".encode('utf-8')).decode('ascii')
    return f"Basic {token}"


def build_page_request(from_datetime: str, to_datetime: str, cursor: Optional[str],
                       page_size: int, call_ids: Optional[List[str]] = None) -> dict:
    """Returns the JSON body for one page request."""
    request_filter = {"fromDateTime": from_datetime, "toDateTime": to_datetime}
    if call_ids:
        request_filter["callIds"] = list(call_ids)
    return {"filter": request_filter, "cursor": cursor, "pageSize": page_size}


def fetch_transcript_pages(session: requests.Session, settings: AppSettings,
                           from_datetime: str, to_datetime: str,
                           call_ids: Optional[List[str]] = None) -> Iterator[List[TranscriptRecord]]:
    """
    Yields one page of transcripts at a time, following the source's cursor.

    The loop ends only when a response comes back without a cursor. Any failed
    page request raises TranscriptFetchError; pages already yielded have been
    handed to the caller by then.
    """
    url = settings.gong_api_base_url.rstrip('/') + TRANSCRIPT_PATH
    headers = {
        "Authorization": build_auth_header(settings.gong_access_key, settings.gong_access_key_secret),
        "Content-Type": "application/json",
    }

    cursor = None
    page_number = 0
    while True:
        page_number += 1
        body = build_page_request(from_datetime, to_datetime, cursor, settings.page_size, call_ids)
        print(f"[fetch] Requesting page {page_number} (cursor={'<none>' if cursor is None else cursor[:12] + '...'})")

        try:
            response = session.post(url, json=body, headers=headers, timeout=settings.http_timeout_seconds)
        except requests.exceptions.RequestException as e:
            raise TranscriptFetchError(f"Transcript request failed on page {page_number}: {e}") from e

        # Gong answers an empty date range with 404 rather than an empty page.
        if response.status_code == 404:
            print(f"[fetch] ℹ️ No calls found in range (page {page_number}).")
            return

        if not response.ok:
            raise TranscriptFetchError(
                f"Transcript source returned {response.status_code} on page {page_number}: {response.text[:200]}"
            )

        try:
            page = TranscriptPage.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise SchemaMismatchError("transcript source", e) from e

        print(f"[fetch] ✅ Page {page_number}: {len(page.call_transcripts)} transcripts.")
        yield page.call_transcripts

        cursor = page.records.cursor
        if cursor is None:
            return
