from collections import defaultdict
from collections.abc import Iterable

from telehealth_backend.database import ACTIVE_SESSION_STATUSES
from telehealth_backend.models.session import TherapySession
from telehealth_backend.schemas.schedule import CandidateSlot, to_minutes


def occupies_slot(session: TherapySession) -> bool:
    return session.status in ACTIVE_SESSION_STATUSES


def overlaps(session: TherapySession, slot: CandidateSlot) -> bool:
    """Half-open interval overlap between a booked session and a candidate slot."""
    return to_minutes(session.start_time) < slot.end_minutes and to_minutes(session.end_time) > slot.start_minutes


def group_active_sessions(sessions: Iterable[TherapySession]) -> dict[tuple, list[TherapySession]]:
    grouped: dict[tuple, list[TherapySession]] = defaultdict(list)
    for session in sessions:
        if occupies_slot(session):
            grouped[(session.therapist_id, session.session_date)].append(session)
    return grouped


def find_conflicts(
    slot: CandidateSlot,
    sessions: Iterable[TherapySession],
    exclude_session_id: int | None = None,
) -> list[TherapySession]:
    """Active sessions of the slot's therapist that overlap it, in start order."""
    conflicts = [
        session
        for session in sessions
        if occupies_slot(session)
        and (exclude_session_id is None or session.id != exclude_session_id)
        and session.therapist_id == slot.therapist_id
        and session.session_date == slot.date
        and overlaps(session, slot)
    ]
    return sorted(conflicts, key=lambda session: session.start_time)


def is_slot_free(slot: CandidateSlot, sessions: Iterable[TherapySession]) -> bool:
    return not find_conflicts(slot, sessions)


def filter_available(
    candidate_slots: Iterable[CandidateSlot],
    existing_sessions: Iterable[TherapySession],
) -> list[CandidateSlot]:
    """Drop every candidate that overlaps an active session of the same therapist.

    Sessions are bucketed by (therapist, date) first so each slot is only
    compared against bookings on its own day.
    """
    grouped = group_active_sessions(existing_sessions)

    return [
        slot
        for slot in candidate_slots
        if not any(overlaps(session, slot) for session in grouped.get((slot.therapist_id, slot.date), ()))
    ]
