# lambdas/ingest_transcripts/transcript_store.py
from datetime import datetime, timezone
from typing import List

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from .models import ClassificationResult, TranscriptRecord, UserInterests


class StoreError(RuntimeError):
    """A single store operation failed. Callers decide whether that is fatal."""

    def __init__(self, message: str, written: List[TranscriptRecord] | None = None):
        super().__init__(message)
        # Records that did reach the table before the failure.
        self.written = written or []


class KeywordLoadError(RuntimeError):
    """The user interest table could not be read. Fatal for the run."""
    pass


def _error_message(e: Exception) -> str:
    if isinstance(e, ClientError):
        return e.response.get('Error', {}).get('Message', str(e))
    return str(e)


def _normalize_interests(raw) -> list[str]:
    # Interests may be stored as a list, a string set, or a comma-separated string.
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(',')
    elif isinstance(raw, (set, frozenset)):
        raw = sorted(raw)
    return [str(i).strip() for i in raw if str(i).strip()]


class TranscriptStore:
    """
    Thin wrapper around the two DynamoDB tables used by the pipeline:
    call transcripts (partition key `call_id`) and user interests (partition key `email`).
    """

    def __init__(self, transcripts_table, user_interests_table):
        self.transcripts_table = transcripts_table
        self.user_interests_table = user_interests_table

    @classmethod
    def from_resource(cls, dynamodb_resource, transcripts_table_name: str, user_interests_table_name: str):
        return cls(
            dynamodb_resource.Table(transcripts_table_name),
            dynamodb_resource.Table(user_interests_table_name),
        )

    @staticmethod
    def to_item(record: TranscriptRecord) -> dict:
        """Converts a transcript record into the item written to DynamoDB."""
        item = record.model_dump(exclude_none=True)
        item['ingested_at'] = datetime.now(timezone.utc).isoformat()
        return item

    def exists(self, call_id: str) -> bool:
        """Point lookup by call_id. Raises StoreError when the lookup itself fails."""
        try:
            response = self.transcripts_table.get_item(
                Key={'call_id': call_id},
                ProjectionExpression='call_id',
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Lookup failed for call '{call_id}': {_error_message(e)}") from e
        return 'Item' in response

    def insert_batch(self, records: List[TranscriptRecord]) -> int:
        """
        Writes one batch of new transcripts using a single batch writer context.
        Returns the number of records written.
        """
        if not records:
            return 0
        try:
            with self.transcripts_table.batch_writer() as batch:
                for record in records:
                    batch.put_item(Item=self.to_item(record))
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Batch insert of {len(records)} records failed: {_error_message(e)}") from e
        return len(records)

    def insert_batch_if_absent(self, records: List[TranscriptRecord]) -> List[TranscriptRecord]:
        """
        Writes each record with a condition on call_id so concurrent runs cannot
        store the same call twice. Records that already exist are skipped.
        Returns the records actually written. On failure the StoreError carries
        the records written before it.
        """
        written = []
        for record in records:
            try:
                self.transcripts_table.put_item(
                    Item=self.to_item(record),
                    ConditionExpression='attribute_not_exists(call_id)',
                )
                written.append(record)
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                    print(f"[persist] ℹ️ Call '{record.call_id}' was stored concurrently. Skipping.")
                    continue
                raise StoreError(f"Conditional insert failed for call '{record.call_id}': {_error_message(e)}", written) from e
            except BotoCoreError as e:
                raise StoreError(f"Conditional insert failed for call '{record.call_id}': {_error_message(e)}", written) from e
        return written

    def attach_matches(self, result: ClassificationResult) -> None:
        """Records which keywords matched a stored call, along with the match details."""
        try:
            self.transcripts_table.update_item(
                Key={'call_id': result.call_id},
                UpdateExpression='SET matched_keywords = :kw, matches = :m',
                ExpressionAttributeValues={
                    ':kw': [m.keyword for m in result.matches],
                    ':m': [m.model_dump() for m in result.matches],
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Could not attach matches to call '{result.call_id}': {_error_message(e)}") from e

    def load_user_interests(self) -> List[UserInterests]:
        """
        Reads every user's interests with a paginated scan.

        Raises:
            KeywordLoadError: If the table cannot be read.
        """
        users = []
        scan_kwargs = {}
        try:
            while True:
                response = self.user_interests_table.scan(**scan_kwargs)
                for item in response.get('Items', []):
                    try:
                        users.append(UserInterests(
                            email=item['email'],
                            interests=_normalize_interests(item.get('interests')),
                            webhook_url=item.get('webhook_url') or None,
                        ))
                    except (KeyError, ValidationError) as e:
                        print(f"[keywords] ⚠️ Skipping malformed user interest row: {e}")
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                scan_kwargs['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            raise KeywordLoadError(f"Failed to fetch user interests: {_error_message(e)}") from e
        return users


def distinct_keywords(users: List[UserInterests]) -> List[str]:
    """
    Flattens every user's interests into one keyword list.
    Duplicates are dropped case-insensitively; the first spelling seen is kept.
    """
    seen = set()
    keywords = []
    for user in users:
        for interest in user.interests:
            key = interest.casefold()
            if key not in seen:
                seen.add(key)
                keywords.append(interest)
    return keywords
