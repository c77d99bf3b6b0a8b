# lambdas/ingest_transcripts/models.py
"""
Pydantic settings and data models for the transcript ingestion Lambda.
"""
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUMMARY_MAX_CHARS = 200


class SchemaMismatchError(ValueError):
    """Raised when an external payload does not have the shape we expect."""

    def __init__(self, source: str, error: ValidationError | Exception):
        self.source = source
        self.error = error
        super().__init__(f"Unexpected payload from {source}: {error}")


class AppSettings(BaseSettings):
    """
    Manages env vars using Pydantic BaseSettings.
    A local .env file is read as well, which makes run_live.py work out of the box.
    """
    model_config = SettingsConfigDict(
        env_file='.env', env_file_encoding='utf-8', extra='ignore', populate_by_name=True
    )

    aws_region: str = Field("us-east-1", alias='AWS_REGION')
    transcripts_table_name: str = Field("CallTranscripts", alias='TRANSCRIPTS_TABLE_NAME')
    user_interests_table_name: str = Field("UserInterests", alias='USER_INTERESTS_TABLE_NAME')

    # Transcript source (Gong)
    gong_api_base_url: str = Field("https://api.gong.io", alias='GONG_API_BASE_URL')
    gong_access_key: str = Field("", alias='GONG_ACCESS_KEY')
    gong_access_key_secret: str = Field("", alias='GONG_ACCESS_KEY_SECRET')
    gong_call_host: str = Field("app.gong.io", alias='GONG_CALL_HOST')

    # Classification service
    openai_api_key: str = Field("", alias='OPENAI_API_KEY')
    openai_model: str = Field("gpt-4o-mini", alias='OPENAI_MODEL')

    # Notification sink used when a user has no webhook of their own
    slack_webhook_url: str = Field("", alias='SLACK_WEBHOOK_URL')

    batch_size: int = Field(25, alias='BATCH_SIZE', ge=1)
    page_size: int = Field(100, alias='PAGE_SIZE', ge=1)
    http_timeout_seconds: float = Field(10.0, alias='HTTP_TIMEOUT_SECONDS', gt=0)
    default_from_datetime: str = Field("2024-01-01T00:00:00-08:00", alias='DEFAULT_FROM_DATETIME')
    default_to_datetime: str = Field("2024-01-31T23:59:59-08:00", alias='DEFAULT_TO_DATETIME')

    # Write each record with attribute_not_exists(call_id) instead of a plain bulk put
    strict_insert: bool = Field(False, alias='STRICT_INSERT')
    allowed_origin: str = Field("*", alias='ALLOWED_ORIGIN')


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Builds the settings once per Lambda container."""
    return AppSettings()


# Transcript source models
class Sentence(BaseModel):
    start: int
    end: int
    text: str


class SpeakerTurn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    speaker_id: Optional[str] = Field(None, alias='speakerId')
    topic: Optional[str] = None
    sentences: List[Sentence] = Field(default_factory=list)


class TranscriptRecord(BaseModel):
    """One call transcript as returned by the source and stored in DynamoDB."""
    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(..., alias='callId', min_length=1)
    transcript: List[SpeakerTurn] = Field(default_factory=list)
    matched_keywords: Optional[List[str]] = None

    @field_validator('call_id', mode='before')
    @classmethod
    def _coerce_call_id(cls, value):
        # Gong sends numeric-looking ids as strings, but older payloads used numbers.
        return str(value) if isinstance(value, int) else value


class PageRecords(BaseModel):
    cursor: Optional[str] = None


class TranscriptPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_transcripts: List[TranscriptRecord] = Field(default_factory=list, alias='callTranscripts')
    records: PageRecords = Field(default_factory=PageRecords)


# Users
class UserInterests(BaseModel):
    email: str
    interests: List[str] = Field(default_factory=list)
    webhook_url: Optional[str] = None


# Classification output
class KeywordMatch(BaseModel):
    keyword: str
    summary: str
    timestamp: int = Field(..., ge=0)
    link: str = ""

    @field_validator('summary')
    @classmethod
    def _clip_summary(cls, value: str) -> str:
        value = value.strip()
        return value if len(value) <= SUMMARY_MAX_CHARS else value[:SUMMARY_MAX_CHARS - 1].rstrip() + "…"


class ClassificationResult(BaseModel):
    call_id: str
    matches: List[KeywordMatch] = Field(default_factory=list)
    # Set when the service could not be used; never part of the stored or requested shape.
    error: Optional[str] = Field(None, exclude=True)


class RunSummary(BaseModel):
    """Per-stage counters reported back to the caller at the end of a run."""
    pages_fetched: int = 0
    records_seen: int = 0
    duplicates_skipped: int = 0
    lookup_failures: int = 0
    batches_persisted: int = 0
    batches_failed: int = 0
    records_persisted: int = 0
    classified: int = 0
    classification_failures: int = 0
    attach_failures: int = 0
    notifications_sent: int = 0
    notification_failures: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
