# tests/test_batcher.py
import pytest

from lambdas.ingest_transcripts.batcher import dedupe_page, plan_batches
from lambdas.ingest_transcripts.models import RunSummary, TranscriptRecord


def records(*call_ids):
    return [TranscriptRecord(call_id=cid) for cid in call_ids]


def ids(batches):
    return [[r.call_id for r in batch] for batch in batches]


def test_plan_batches_splits_in_order():
    assert ids(plan_batches(records("1", "2", "3", "4", "5"), set(), 2)) == [["1", "2"], ["3", "4"], ["5"]]


def test_plan_batches_skips_existing_and_repeated_ids():
    batches = plan_batches(records("1", "2", "1", "3", "4"), {"2", "4"}, 10)
    assert ids(batches) == [["1", "3"]]


@pytest.mark.parametrize("batch_size", [1, 2, 3, 7])
def test_plan_batches_never_exceeds_batch_size(batch_size):
    batches = plan_batches(records(*[str(i) for i in range(10)]), {"3"}, batch_size)
    assert all(0 < len(b) <= batch_size for b in batches)
    assert sum(len(b) for b in batches) == 9


def test_plan_batches_empty_input():
    assert plan_batches([], set(), 3) == []


def test_plan_batches_rejects_non_positive_size():
    with pytest.raises(ValueError):
        plan_batches(records("1"), set(), 0)


def test_dedupe_page_skips_stored_calls(store, transcripts_table):
    transcripts_table.items["2"] = {"call_id": "2"}
    summary = RunSummary()

    batches = dedupe_page(store, records("1", "2", "3"), 25, summary)

    assert ids(batches) == [["1", "3"]]
    assert summary.records_seen == 3
    assert summary.duplicates_skipped == 1
    assert transcripts_table.get_calls == ["1", "2", "3"]


def test_dedupe_page_lookup_failure_skips_only_that_record(store, transcripts_table):
    transcripts_table.fail_get_for.add("2")
    summary = RunSummary()

    batches = dedupe_page(store, records("1", "2", "3"), 25, summary)

    assert ids(batches) == [["1", "3"]]
    assert summary.lookup_failures == 1


def test_dedupe_page_counts_in_page_repeats_as_duplicates(store):
    summary = RunSummary()

    batches = dedupe_page(store, records("1", "1", "2"), 1, summary)

    assert ids(batches) == [["1"], ["2"]]
    assert summary.duplicates_skipped == 1
