# tests/conftest.py
import json
from contextlib import contextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from botocore.exceptions import ClientError

from lambdas.ingest_transcripts.app import PipelineDependencies
from lambdas.ingest_transcripts.classifier import TranscriptClassifier
from lambdas.ingest_transcripts.models import AppSettings
from lambdas.ingest_transcripts.transcript_store import TranscriptStore


def client_error(code: str, operation: str = "Operation", message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeTable:
    """In-memory stand-in for the handful of boto3 Table methods the pipeline uses."""

    def __init__(self, key_name: str, scan_page_size: int = 100):
        self.key_name = key_name
        self.items = {}
        self.scan_page_size = scan_page_size
        self.get_calls = []
        self.batch_calls = 0
        self.fail_get_for = set()
        self.fail_put_for = set()
        self.fail_batch_writes = False
        self.fail_scan = False
        self.fail_update = False

    def get_item(self, Key, ProjectionExpression=None):
        key = Key[self.key_name]
        self.get_calls.append(key)
        if key in self.fail_get_for:
            raise client_error("ProvisionedThroughputExceededException", "GetItem")
        if key in self.items:
            return {"Item": dict(self.items[key])}
        return {}

    def put_item(self, Item, ConditionExpression=None):
        key = Item[self.key_name]
        if key in self.fail_put_for:
            raise client_error("ProvisionedThroughputExceededException", "PutItem", "Rate of requests exceeds the allowed throughput")
        if ConditionExpression and key in self.items:
            raise client_error("ConditionalCheckFailedException", "PutItem", "The conditional request failed")
        self.items[key] = dict(Item)
        return {}

    @contextmanager
    def batch_writer(self):
        self.batch_calls += 1
        pending = []
        writer = SimpleNamespace(put_item=lambda Item: pending.append(Item))
        yield writer
        if self.fail_batch_writes:
            raise client_error("ValidationException", "BatchWriteItem", "Batch write rejected")
        for item in pending:
            self.items[item[self.key_name]] = dict(item)

    def update_item(self, Key, UpdateExpression, ExpressionAttributeValues):
        if self.fail_update:
            raise client_error("InternalServerError", "UpdateItem")
        item = self.items.setdefault(Key[self.key_name], dict(Key))
        item["matched_keywords"] = ExpressionAttributeValues[":kw"]
        item["matches"] = ExpressionAttributeValues[":m"]
        return {}

    def scan(self, ExclusiveStartKey=None):
        if self.fail_scan:
            raise client_error("AccessDeniedException", "Scan", "not authorized to perform: dynamodb:Scan")
        keys = sorted(self.items)
        start = keys.index(ExclusiveStartKey[self.key_name]) + 1 if ExclusiveStartKey else 0
        page_keys = keys[start:start + self.scan_page_size]
        response = {"Items": [dict(self.items[k]) for k in page_keys]}
        if start + self.scan_page_size < len(keys):
            response["LastEvaluatedKey"] = {self.key_name: page_keys[-1]}
        return response


def make_response(status_code: int = 200, body=None) -> MagicMock:
    """Builds a fake requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = body if body is not None else {}
    response.text = json.dumps(body) if body is not None else ""
    if not response.ok:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    return response


def make_call(call_id: str, *sentences: tuple) -> dict:
    """Builds one callTranscripts entry in the source's wire format."""
    return {
        "callId": call_id,
        "transcript": [{
            "speakerId": "spk-1",
            "topic": "Discussion",
            "sentences": [{"start": start, "end": start + 1500, "text": text} for start, text in sentences],
        }],
    }


def make_page(calls: list, cursor=None) -> dict:
    records = {"totalRecords": len(calls), "currentPageSize": len(calls), "currentPageNumber": 0}
    if cursor is not None:
        records["cursor"] = cursor
    return {"requestId": "req-1", "records": records, "callTranscripts": calls}


def completion(content, refusal=None):
    """Shapes a chat.completions.create() result the way the OpenAI SDK does."""
    message = SimpleNamespace(content=content, refusal=refusal)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def keyword_echo_completion(**kwargs):
    """
    Fake model: reports a match for every listed keyword that appears verbatim in a
    transcript line, using that line's timestamp.
    """
    prompt = kwargs["messages"][1]["content"]
    keyword_section = prompt.split("Keywords of interest:\n", 1)[1].split("\n\n", 1)[0]
    keywords = [line[2:] for line in keyword_section.splitlines() if line.startswith("- ")]
    call_id = prompt.split("Call id: ")[1].splitlines()[0]
    transcript = prompt.split("Transcript:\n", 1)[1]

    matches = []
    for keyword in keywords:
        for line in transcript.splitlines():
            if keyword.lower() in line.lower():
                timestamp = int(line[1:line.index("]")])
                matches.append({"keyword": keyword, "summary": f"Discussed {keyword}.", "timestamp": timestamp,
                                "link": "https://example.com/made-up"})
                break
    return completion(json.dumps({"call_id": call_id, "matches": matches}))


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        gong_api_base_url="https://api.gong.test",
        gong_access_key="key",
        gong_access_key_secret="secret",
        gong_call_host="app.gong.io",
        openai_api_key="sk-test",
        slack_webhook_url="https://hooks.slack.test/default",
        batch_size=2,
        page_size=50,
        http_timeout_seconds=5,
        default_from_datetime="2024-05-01T00:00:00-07:00",
        default_to_datetime="2024-05-31T23:59:59-07:00",
    )


@pytest.fixture
def transcripts_table() -> FakeTable:
    return FakeTable("call_id")


@pytest.fixture
def interests_table() -> FakeTable:
    table = FakeTable("email")
    table.items = {
        "ana@example.com": {"email": "ana@example.com", "interests": ["Pricing", "SOC 2"]},
        "bo@example.com": {"email": "bo@example.com", "interests": {"pricing", "Onboarding"},
                           "webhook_url": "https://hooks.slack.test/bo"},
    }
    return table


@pytest.fixture
def store(transcripts_table, interests_table) -> TranscriptStore:
    return TranscriptStore(transcripts_table, interests_table)


@pytest.fixture
def openai_client() -> MagicMock:
    client = MagicMock()
    client.chat.completions.create.side_effect = keyword_echo_completion
    return client


@pytest.fixture
def classifier(openai_client, settings) -> TranscriptClassifier:
    return TranscriptClassifier(openai_client, settings.openai_model, settings.gong_call_host)


@pytest.fixture
def http() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def deps(settings, store, classifier, http) -> PipelineDependencies:
    return PipelineDependencies(settings=settings, store=store, classifier=classifier, http=http)
