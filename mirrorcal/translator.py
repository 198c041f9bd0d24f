from __future__ import annotations

import copy
from dataclasses import replace
from typing import Iterable

from mirrorcal.models import STATUS_CONFIRMED, Attendee, EventRecord, PairConfig


ATTENDEES_HEADER = "\n\n==============\nATTENDEES:\n"
RESOURCE_EMAIL_MARKER = "resource.calendar.google.com"


def format_attendee(attendee: Attendee) -> str:
    name = attendee.display_name or "-"
    email = "--" if RESOURCE_EMAIL_MARKER in (attendee.email or "") else attendee.email
    comment = f" ({attendee.comment})" if attendee.comment else ""
    return f"{name} ({email}) - status: {attendee.response_status}{comment}\n"


def attendees_to_description(attendees: Iterable[Attendee] | None) -> str:
    if attendees is None:
        return ""
    return ATTENDEES_HEADER + "".join(format_attendee(attendee) for attendee in attendees)


def translate_event(source: EventRecord, existing: EventRecord, pair: PairConfig) -> EventRecord:
    """Build the destination payload for ``source`` on top of ``existing``.

    Source attendees are rendered into the description; the payload keeps the
    attendee list of ``existing``. The sequence never goes below what the
    destination already has.
    """
    summary = (source.summary or "") + (f" {pair.summary_appendix}" if pair.summary_appendix else "")
    description = (
        (source.description or "") + attendees_to_description(source.attendees) + pair.description_appendix
    )
    return replace(
        existing,
        summary=summary,
        description=description,
        location=source.location,
        start=copy.deepcopy(source.start),
        end=copy.deepcopy(source.end),
        reminders=copy.deepcopy(source.reminders),
        recurrence=list(source.recurrence) if source.recurrence is not None else None,
        recurring_event_id=source.recurring_event_id,
        status=STATUS_CONFIRMED,
        sequence=max(existing.sequence or 0, source.sequence or 0),
        color_id=pair.destination_color or existing.color_id,
    )
