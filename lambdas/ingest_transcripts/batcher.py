# lambdas/ingest_transcripts/batcher.py
from typing import Iterable, List, Set

from .models import RunSummary, TranscriptRecord
from .transcript_store import StoreError, TranscriptStore


def plan_batches(records: Iterable[TranscriptRecord], existing: Set[str], batch_size: int) -> List[List[TranscriptRecord]]:
    """
    Splits the records that are not yet stored into batches of at most batch_size.

    Records whose call_id is in `existing` are dropped, as are repeats of a
    call_id already planned from the same input. Input order is preserved.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    batches: List[List[TranscriptRecord]] = []
    current: List[TranscriptRecord] = []
    planned: Set[str] = set()

    for record in records:
        if record.call_id in existing or record.call_id in planned:
            continue
        planned.add(record.call_id)
        current.append(record)
        if len(current) == batch_size:
            batches.append(current)
            current = []

    if current:
        batches.append(current)
    return batches


def dedupe_page(store: TranscriptStore, records: List[TranscriptRecord], batch_size: int,
                summary: RunSummary) -> List[List[TranscriptRecord]]:
    """
    Checks every record of a page against the store and returns batches of new ones.

    A failed lookup skips that record only. All lookups finish before the
    batches are returned, so nothing from this page is persisted early.
    """
    existing: Set[str] = set()
    candidates: List[TranscriptRecord] = []

    for record in records:
        summary.records_seen += 1
        try:
            found = store.exists(record.call_id)
        except StoreError as e:
            print(f"[dedup] ❌ {e}. Skipping record.")
            summary.lookup_failures += 1
            continue

        if found:
            print(f"[dedup] Call '{record.call_id}' already stored. Skipping.")
            existing.add(record.call_id)
            summary.duplicates_skipped += 1
            continue
        candidates.append(record)

    batches = plan_batches(candidates, existing, batch_size)
    planned = sum(len(b) for b in batches)
    # Repeats of the same call_id inside one page count as duplicates too.
    summary.duplicates_skipped += len(candidates) - planned
    print(f"[dedup] {planned} new of {len(records)} records -> {len(batches)} batch(es).")
    return batches
