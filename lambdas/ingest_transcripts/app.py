# lambdas/ingest_transcripts/app.py
import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

import boto3
import requests
from botocore.config import Config
from openai import OpenAI

# Deployed with the repository root as the code root, so the handler is
# lambdas.ingest_transcripts.app.handler and siblings import as a package.
from .batcher import dedupe_page
from .classifier import TranscriptClassifier, flatten_transcript
from .fetcher import TranscriptFetchError, fetch_transcript_pages
from .models import AppSettings, ClassificationResult, RunSummary, SchemaMismatchError, TranscriptRecord, get_settings
from .notifier import notify_users
from .request_parser import InvalidRequestError, parse_and_validate_request
from .transcript_store import KeywordLoadError, StoreError, TranscriptStore, distinct_keywords


@dataclass
class PipelineDependencies:
    """Everything a run talks to, built once per container and passed into each stage."""
    settings: AppSettings
    store: TranscriptStore
    classifier: TranscriptClassifier
    http: requests.Session


def build_dependencies(settings: AppSettings) -> PipelineDependencies:
    boto_config = Config(
        connect_timeout=settings.http_timeout_seconds,
        read_timeout=settings.http_timeout_seconds,
        retries={'max_attempts': 2, 'mode': 'standard'},
    )
    dynamodb = boto3.resource('dynamodb', region_name=settings.aws_region, config=boto_config)
    store = TranscriptStore.from_resource(
        dynamodb, settings.transcripts_table_name, settings.user_interests_table_name
    )
    openai_client = OpenAI(api_key=settings.openai_api_key, timeout=settings.http_timeout_seconds, max_retries=0)
    classifier = TranscriptClassifier(openai_client, settings.openai_model, settings.gong_call_host)
    return PipelineDependencies(settings=settings, store=store, classifier=classifier, http=requests.Session())


@lru_cache(maxsize=1)
def get_dependencies() -> PipelineDependencies:
    """Reused across warm Lambda invocations."""
    return build_dependencies(get_settings())


def persist_batches(store: TranscriptStore, batches: List[List[TranscriptRecord]], strict_insert: bool,
                    summary: RunSummary) -> List[TranscriptRecord]:
    """
    Writes each batch with one request. A failed batch is logged and dropped,
    except for any records it managed to store before failing.
    Returns the records that were written.
    """
    persisted = []
    for index, batch in enumerate(batches, start=1):
        try:
            if strict_insert:
                written = store.insert_batch_if_absent(batch)
            else:
                store.insert_batch(batch)
                written = batch
        except StoreError as e:
            print(f"[persist] ❌ Batch {index}/{len(batches)} failed: {e}")
            summary.batches_failed += 1
            if e.written:
                print(f"[persist] {len(e.written)} record(s) of that batch were stored before the failure.")
                summary.records_persisted += len(e.written)
                persisted.extend(e.written)
            continue

        print(f"[persist] ✅ Batch {index}/{len(batches)}: {len(written)} record(s) stored.")
        summary.batches_persisted += 1
        summary.records_persisted += len(written)
        persisted.extend(written)
    return persisted


def classify_records(deps: PipelineDependencies, records: List[TranscriptRecord], keywords: List[str],
                     summary: RunSummary) -> List[ClassificationResult]:
    """Classifies every given call against the keyword list and stores non-empty results."""
    results = []
    batch_size = deps.settings.batch_size
    for start in range(0, len(records), batch_size):
        group = records[start:start + batch_size]
        print(f"[classify] Classifying calls {start + 1}-{start + len(group)} of {len(records)}...")
        for record in group:
            result = deps.classifier.classify(record.call_id, flatten_transcript(record.transcript), keywords)
            summary.classified += 1
            if result.error:
                summary.classification_failures += 1
            if not result.matches:
                continue

            results.append(result)
            record.matched_keywords = [m.keyword for m in result.matches]
            try:
                deps.store.attach_matches(result)
            except StoreError as e:
                print(f"[classify] ⚠️ {e}")
                summary.attach_failures += 1
    return results


def run_pipeline(deps: PipelineDependencies, from_datetime: str, to_datetime: str,
                 call_ids: Optional[List[str]] = None) -> RunSummary:
    """
    One full run: fetch, dedupe, persist (per page), then classify and notify.

    Raises:
        TranscriptFetchError, SchemaMismatchError: If a transcript page cannot be fetched.
        KeywordLoadError: If user interests cannot be read.
    """
    settings = deps.settings
    summary = RunSummary()
    ingested: List[TranscriptRecord] = []

    # Fetch -> dedupe -> persist, one page at a time
    for page in fetch_transcript_pages(deps.http, settings, from_datetime, to_datetime, call_ids):
        summary.pages_fetched += 1
        batches = dedupe_page(deps.store, page, settings.batch_size, summary)
        ingested.extend(persist_batches(deps.store, batches, settings.strict_insert, summary))

    # Classify and notify
    users = deps.store.load_user_interests()
    keywords = distinct_keywords(users)
    print(f"[keywords] Loaded {len(keywords)} distinct keyword(s) for {len(users)} user(s).")

    if not ingested or not keywords:
        print("[classify] ℹ️ Nothing to classify in this run.")
        return summary

    results = classify_records(deps, ingested, keywords, summary)
    if results:
        notify_users(deps.http, users, results, settings.slack_webhook_url, settings.http_timeout_seconds, summary)
    return summary


def build_response(status_code: int, body: dict, allowed_origin: str = "*") -> dict:
    """Helper function to build the API Gateway proxy response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': allowed_origin,
        },
        'body': json.dumps(body, default=str),
    }


def handler(event: Dict[str, Any], context: object, deps: Optional[PipelineDependencies] = None) -> Dict[str, Any]:
    """
    HTTP-triggered entry point. Ingests transcripts for the requested date range,
    then alerts users whose interests came up in the new calls.
    """
    print("--- Ingest Transcripts Lambda Triggered ---")
    try:
        deps = deps or get_dependencies()
    except Exception as e:
        print(f"❌ FATAL: Lambda is not configured correctly: {e}")
        return build_response(500, {'error': 'Server configuration error.'})
    origin = deps.settings.allowed_origin

    try:
        from_datetime, to_datetime, call_ids = parse_and_validate_request(event, deps.settings)
    except InvalidRequestError as e:
        print(f"⚠️ Bad Request: {e}")
        return build_response(400, {'error': str(e)}, origin)

    print(f"Processing calls from {from_datetime} to {to_datetime}" + (f" for {len(call_ids)} call id(s)" if call_ids else ""))

    try:
        summary = run_pipeline(deps, from_datetime, to_datetime, call_ids)
    except (TranscriptFetchError, SchemaMismatchError, KeywordLoadError) as e:
        print(f"❌ FATAL: {e}")
        return build_response(500, {'error': str(e)}, origin)
    except Exception as e:
        print(f"❌ An unexpected error occurred: {e}")
        return build_response(500, {'error': 'An internal server error occurred.'}, origin)

    print(f"✅ Run finished: {summary.model_dump_json()}")
    return build_response(200, {'message': 'Processing complete', 'summary': summary.model_dump(mode='json')}, origin)
