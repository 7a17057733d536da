"""Meeting status transitions.

    uploaded -> transcribing -> transcribed -> summarizing -> completed
                     |                              |
                     +----------> failed <----------+

``failed`` and ``completed`` have no automatic way out. The only edges leaving
``failed`` are the explicit stage retries (see ``CLAIM_SOURCES``), which a
caller has to request by invoking the stage again.
"""

from typing import Dict, FrozenSet

from .models import MeetingStatus

S = MeetingStatus

TRANSITIONS: Dict[MeetingStatus, FrozenSet[MeetingStatus]] = {
    S.UPLOADED: frozenset({S.TRANSCRIBING}),
    S.TRANSCRIBING: frozenset({S.TRANSCRIBED, S.FAILED}),
    S.TRANSCRIBED: frozenset({S.SUMMARIZING}),
    S.SUMMARIZING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}

# Statuses a stage may be claimed from. FAILED is an explicit retry; the
# callers additionally check which records already exist.
CLAIM_SOURCES: Dict[MeetingStatus, FrozenSet[MeetingStatus]] = {
    S.TRANSCRIBING: frozenset({S.UPLOADED, S.FAILED}),
    S.SUMMARIZING: frozenset({S.TRANSCRIBED, S.FAILED}),
}

TERMINAL = frozenset({S.COMPLETED, S.FAILED})


class InvalidTransition(Exception):
    def __init__(self, current: MeetingStatus, target: MeetingStatus):
        super().__init__(f"Invalid status transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


def can_transition(current: MeetingStatus, target: MeetingStatus) -> bool:
    current, target = MeetingStatus(current), MeetingStatus(target)
    if target in TRANSITIONS[current]:
        return True
    return current in CLAIM_SOURCES.get(target, frozenset())


def check_transition(current: MeetingStatus, target: MeetingStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(MeetingStatus(current), MeetingStatus(target))
