"""Calendar collaborator — turns scheduling requests into event drafts."""

import uuid
from datetime import datetime
from typing import Protocol

from silenttray.errors import ValidationError
from silenttray.models import CalendarEventDraft
from silenttray.store import to_iso


class CalendarClient(Protocol):
    def create_event(self, title: str, start: datetime | str, end: datetime | str,
                     attendees: list[str] | None = None) -> CalendarEventDraft: ...


class DraftCalendarClient:
    """Returns drafts without talking to any calendar provider.

    Nothing is persisted; the draft id only identifies the descriptor.
    """

    @staticmethod
    def _generate_id() -> str:
        return f"cal-{uuid.uuid4().hex[:12]}"

    def create_event(self, title: str, start: datetime | str, end: datetime | str,
                     attendees: list[str] | None = None) -> CalendarEventDraft:
        if not title.strip():
            raise ValidationError("Calendar event title must not be empty")
        start_iso = to_iso(start)
        end_iso = to_iso(end)
        if datetime.fromisoformat(end_iso) < datetime.fromisoformat(start_iso):
            raise ValidationError(
                f"Calendar event ends before it starts: {start_iso} > {end_iso}"
            )
        return CalendarEventDraft(
            id=self._generate_id(),
            title=title,
            start=start_iso,
            end=end_iso,
            attendees=list(attendees) if attendees else None,
        )
