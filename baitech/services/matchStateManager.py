"""
Match State Manager
===================

Finite state machine for the lifecycle of a suggested match::

    suggested --> viewed --> accepted
         |          |------> rejected
         |          '------> expired
         '--> accepted | rejected | expired

accepted, rejected and expired are terminal. Every status change goes
through ``validate_match_transition`` before it is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass

from baitech.models.matching import MatchStatus


@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


VALID_MATCH_TRANSITIONS: dict[MatchStatus, set[MatchStatus]] = {
    MatchStatus.SUGGESTED: {
        MatchStatus.VIEWED,
        MatchStatus.ACCEPTED,
        MatchStatus.REJECTED,
        MatchStatus.EXPIRED,
    },
    MatchStatus.VIEWED: {
        MatchStatus.ACCEPTED,
        MatchStatus.REJECTED,
        MatchStatus.EXPIRED,
    },
    MatchStatus.ACCEPTED: set(),
    MatchStatus.REJECTED: set(),
    MatchStatus.EXPIRED: set(),
}

OPEN_MATCH_STATUSES: frozenset[MatchStatus] = frozenset({
    MatchStatus.SUGGESTED,
    MatchStatus.VIEWED,
})


def is_terminal(status: MatchStatus) -> bool:
    return not VALID_MATCH_TRANSITIONS.get(status)


def validate_match_transition(current: MatchStatus, target: MatchStatus) -> TransitionResult:
    if target in VALID_MATCH_TRANSITIONS.get(current, set()):
        return TransitionResult(allowed=True)
    if is_terminal(current):
        return TransitionResult(
            allowed=False,
            reason=f"Match is already {current.value}; no further changes are allowed.",
        )
    return TransitionResult(
        allowed=False,
        reason=f"Cannot move a match from '{current.value}' to '{target.value}'.",
    )
