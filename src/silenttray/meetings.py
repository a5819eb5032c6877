"""Meeting capture — transcript accumulation and summary/entity extraction."""

import re
from typing import Any, Protocol

from silenttray.errors import NotFoundError, ValidationError
from silenttray.models import MeetingSummary, TranscriptionResult
from silenttray.observability import get_logger
from silenttray.store import EntityStore

logger = get_logger(__name__)

DECISION_KEYWORDS = ("decided", "agreed", "resolved", "concluded")
RISK_KEYWORDS = ("risk", "concern", "issue", "problem", "challenge")
ACTION_KEYWORDS = ("todo", "action", "follow up", "next step", "will do")
TOPIC_KEYWORDS = ("project", "budget", "timeline", "strategy", "planning")

MAX_PEOPLE = 10

_NAME_PATTERN = re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b")
_DATE_PATTERN = re.compile(
    r"\b\d{1,2}/\d{1,2}/\d{4}\b"
    r"|\b\d{1,2}-\d{1,2}-\d{4}\b"
    r"|\b(?:January|February|March|April|May|June|July|August|September"
    r"|October|November|December)\s+\d{1,2},?\s+\d{4}\b",
    re.IGNORECASE,
)


class Summarizer(Protocol):
    def summarize(self, transcript: str) -> str: ...

    def extract_entities(self, transcript: str, title: str) -> dict[str, Any]: ...


def _dedupe(items: list[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


class HeuristicSummarizer:
    """Keyword and pattern based stand-in for a model-backed summarizer."""

    def summarize(self, transcript: str) -> str:
        word_count = len(transcript.split(" "))
        if word_count < 50:
            return (
                f"Brief meeting discussion covering {word_count} words of content. "
                "Key topics discussed based on transcript analysis."
            )
        if word_count < 200:
            return (
                f"Meeting discussion covering {word_count} words. Multiple topics were "
                "covered with detailed discussion points and participant contributions."
            )
        return (
            f"Comprehensive meeting discussion with {word_count} words of detailed content. "
            "Extensive coverage of topics with in-depth participant engagement "
            "and multiple decision points."
        )

    def extract_entities(self, transcript: str, title: str) -> dict[str, Any]:
        lowered = transcript.lower()
        return {
            "decisions": [
                f"Decision identified related to: {kw}"
                for kw in DECISION_KEYWORDS if kw in lowered
            ],
            "risks": [
                f"Risk identified: {kw} mentioned in discussion"
                for kw in RISK_KEYWORDS if kw in lowered
            ],
            "people": _dedupe(_NAME_PATTERN.findall(transcript))[:MAX_PEOPLE],
            "dates": _dedupe(_DATE_PATTERN.findall(transcript)),
            "action_items": [
                f"Action item: {kw} mentioned"
                for kw in ACTION_KEYWORDS if kw in lowered
            ],
            "topics": [title] + [kw for kw in TOPIC_KEYWORDS if kw in lowered],
        }


def simulate_transcription(audio_chunk: str) -> str:
    """Map a base64 audio chunk to canned transcript text by its length."""
    if not audio_chunk:
        raise ValidationError("Invalid audio chunk provided")
    size = len(audio_chunk)
    if size < 100:
        return "Hello"
    if size < 500:
        return "Hello everyone, welcome to today's meeting."
    if size < 1000:
        return "We need to discuss the quarterly results and plan for next month."
    return (
        "The project is progressing well, but we need to address some technical "
        "challenges that have emerged this week."
    )


class MeetingService:
    """Accumulates meeting transcripts on notes and finalizes them into summaries."""

    def __init__(self, store: EntityStore, summarizer: Summarizer | None = None):
        self.store = store
        self.summarizer = summarizer or HeuristicSummarizer()

    def transcribe(self, audio_chunk: str, note_id: str | None = None) -> TranscriptionResult:
        """Transcribe a chunk; when note_id is given, append it to that note's transcript."""
        chunk_text = simulate_transcription(audio_chunk)

        if note_id:
            note = self.store.get_note(note_id)
            if note is None:
                raise NotFoundError(f"Note with id {note_id} not found")
            current = note.transcript_text or ""
            self.store.update_note(note_id, {
                "transcript_text": f"{current} {chunk_text}".strip(),
            })

        return TranscriptionResult(partial_transcript=chunk_text, note_id=note_id)

    def finalize(self, note_id: str) -> MeetingSummary:
        """Summarize the note's transcript and store summary + entities on the note."""
        note = self.store.get_note(note_id)
        if note is None:
            raise NotFoundError("Meeting note not found")
        if not note.transcript_text or not note.transcript_text.strip():
            raise ValidationError("No transcript text found for meeting note")

        summary_text = self.summarizer.summarize(note.transcript_text)
        entities = self.summarizer.extract_entities(note.transcript_text, note.title)
        self.store.update_note(note_id, {
            "summary_text": summary_text,
            "entities": entities,
        })
        logger.info("meeting_finalized", note_id=note_id,
                    people=len(entities.get("people", [])))
        return MeetingSummary(summary_text=summary_text, entities=entities)
