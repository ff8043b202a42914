"""Ban state transitions driven by moderation actions.

Every action maps to exactly one effect on a user's ban state through
``ACTION_EFFECTS``. The same table is used when applying a live action and
when replaying the moderation log to rebuild the projection.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Protocol

from arcade_chat.core.database import utcnow
from arcade_chat.modules.moderation.models import ModerationAction


class BanEffect(str, Enum):
    """Effect an action has on ban state."""
    SUSPEND = "suspend"
    LIFT = "lift"
    NONE = "none"


ACTION_EFFECTS: dict[ModerationAction, BanEffect] = {
    ModerationAction.BAN: BanEffect.SUSPEND,
    ModerationAction.TIMEOUT: BanEffect.SUSPEND,
    ModerationAction.UNBAN: BanEffect.LIFT,
    ModerationAction.WARN: BanEffect.NONE,
    ModerationAction.KICK: BanEffect.NONE,
}

# Longest timeout accepted; anything longer should be a ban
MAX_TIMEOUT_MINUTES = 60 * 24 * 365


@dataclass(frozen=True)
class BanState:
    """Suspension state of one user."""
    is_suspended: bool = False
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_effectively_suspended(self, now: Optional[datetime] = None) -> bool:
        return is_effectively_suspended(self.is_suspended, self.expires_at, now)


NOT_SUSPENDED = BanState()


class LogEntryLike(Protocol):
    action: str
    reason: str
    expires_at: Optional[datetime]


def is_effectively_suspended(
    is_suspended: bool,
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """Whether a suspension is in force at ``now``.

    Expiry is evaluated lazily: a suspension whose ``expires_at`` has passed
    is treated as lifted even though ``is_suspended`` is still set.
    A null ``expires_at`` means the suspension is permanent.
    """
    if not is_suspended:
        return False
    if expires_at is None:
        return True
    return (now or utcnow()) < expires_at


def compute_expires_at(
    action: ModerationAction,
    duration_minutes: Optional[int],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Expiry for an action: ``now + duration`` for timeouts, otherwise None."""
    if action != ModerationAction.TIMEOUT or not duration_minutes:
        return None
    return (now or utcnow()) + timedelta(minutes=duration_minutes)


def apply_transition(
    state: BanState,
    action: ModerationAction,
    reason: Optional[str],
    expires_at: Optional[datetime],
) -> BanState:
    """Return the ban state after applying ``action`` to ``state``."""
    effect = ACTION_EFFECTS[action]
    if effect == BanEffect.SUSPEND:
        return BanState(is_suspended=True, reason=reason, expires_at=expires_at)
    if effect == BanEffect.LIFT:
        return NOT_SUSPENDED
    return state


def replay_log(entries: Iterable[LogEntryLike], initial: BanState = NOT_SUSPENDED) -> BanState:
    """Fold moderation log entries, oldest first, into a ban state."""
    state = initial
    for entry in entries:
        state = apply_transition(
            state,
            ModerationAction(entry.action),
            entry.reason,
            entry.expires_at,
        )
    return state
