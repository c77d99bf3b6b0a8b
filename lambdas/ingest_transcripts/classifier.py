# lambdas/ingest_transcripts/classifier.py
import json
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import quote

from openai import OpenAIError
from pydantic import ValidationError

from .models import SUMMARY_MAX_CHARS, ClassificationResult, KeywordMatch, SchemaMismatchError, SpeakerTurn

SYSTEM_PROMPT = (
    "You are an assistant that reviews sales call transcripts and reports which of the "
    "given keywords were discussed. Answer only with JSON that follows the provided schema."
)

# Structured-output schema requested from the model. Strict mode needs every
# property listed as required and no additional properties.
CLASSIFICATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "call_id": {"type": "string"},
        "matches": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "keyword": {"type": "string"},
                    "summary": {
                        "type": "string",
                        "description": f"At most {SUMMARY_MAX_CHARS} characters.",
                    },
                    "timestamp": {"type": "integer", "description": "Offset into the call in milliseconds."},
                    "link": {"type": "string"},
                },
                "required": ["keyword", "summary", "timestamp", "link"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["call_id", "matches"],
    "additionalProperties": False,
}


def build_deep_link(call_host: str, call_id: str, timestamp: int) -> str:
    """
    Returns a link that opens the call at the given millisecond offset, e.g.
    https://app.gong.io/call?id=12345&highlights=%5B%7B%22from%22%3A4030%7D%5D
    """
    highlights = quote(json.dumps([{"from": int(timestamp)}], separators=(',', ':')), safe='')
    return f"https://{call_host}/call?id={quote(str(call_id), safe='')}&highlights={highlights}"


def flatten_transcript(turns: List[SpeakerTurn]) -> str:
    """Turns structured speaker turns into one '[start] text' line per sentence."""
    lines = []
    for turn in turns:
        for sentence in turn.sentences:
            text = sentence.text.strip()
            if text:
                lines.append(f"[{sentence.start}] {text}")
    return "\n".join(lines)


class TranscriptClassifier:
    """
    Asks an OpenAI chat model which interest keywords a call transcript touches on.

    Any failure talking to the model, or an answer that does not fit the schema,
    yields an empty result for that call instead of an exception.
    """

    def __init__(self, client, model: str, call_host: str):
        self.client = client
        self.model = model
        self.call_host = call_host
        prompt_path = Path(__file__).parent / "classification_prompt.txt"
        self.prompt_template = prompt_path.read_text(encoding='utf-8')

    def build_messages(self, call_id: str, transcript_text: str, keywords: List[str]) -> List[Dict[str, str]]:
        keywords_text = "\n".join(f"- {k}" for k in keywords)
        user_prompt = self.prompt_template.format(
            keywords_text=keywords_text, call_id=call_id, transcript_text=transcript_text
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

    def classify(self, call_id: str, transcript_text: str, keywords: List[str]) -> ClassificationResult:
        """Returns the keyword matches for one call. Never raises for service errors."""
        if not keywords or not transcript_text.strip():
            return ClassificationResult(call_id=call_id, matches=[])

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(call_id, transcript_text, keywords),
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "call_keyword_matches", "strict": True, "schema": CLASSIFICATION_SCHEMA},
                },
                temperature=0,
            )
            raw = self._parse_response(response)
        except (OpenAIError, SchemaMismatchError) as e:
            print(f"[classify] ⚠️ Classification failed for call '{call_id}': {e}. Treating as no matches.")
            return ClassificationResult(call_id=call_id, matches=[], error=str(e))

        return self._normalize(call_id, raw, keywords)

    @staticmethod
    def _parse_response(response) -> ClassificationResult:
        try:
            message = response.choices[0].message
            if getattr(message, "refusal", None):
                raise ValueError(f"model refused: {message.refusal}")
            if not message.content:
                raise ValueError("empty response content")
            return ClassificationResult.model_validate(json.loads(message.content))
        except (AttributeError, IndexError, TypeError, ValueError, ValidationError) as e:
            raise SchemaMismatchError("classification service", e) from e

    def _normalize(self, call_id: str, raw: ClassificationResult, keywords: List[str]) -> ClassificationResult:
        """
        Keeps only matches for requested keywords, spelled as requested, and
        rebuilds every link locally. The call_id is always the one we asked about.
        """
        by_folded = {k.casefold(): k for k in keywords}
        matches = []
        seen = set()
        for match in raw.matches:
            keyword = by_folded.get(match.keyword.strip().casefold())
            if keyword is None:
                print(f"[classify] Dropping match for unrequested keyword '{match.keyword}' on call '{call_id}'.")
                continue
            if (keyword, match.timestamp) in seen:
                continue
            seen.add((keyword, match.timestamp))
            matches.append(KeywordMatch(
                keyword=keyword,
                summary=match.summary,
                timestamp=match.timestamp,
                link=build_deep_link(self.call_host, call_id, match.timestamp),
            ))
        return ClassificationResult(call_id=call_id, matches=matches)
