"""Automod module: AI moderation oracle and the gate that enforces its verdicts."""

from arcade_chat.modules.automod.gate import AutomodGate, EscalationPolicy
from arcade_chat.modules.automod.models import AutomodLog
from arcade_chat.modules.automod.oracle import (
    AutomodError,
    ModerationOracle,
    OpenAIModerationOracle,
    OracleResponseError,
    parse_verdict,
)
from arcade_chat.modules.automod.router import router
from arcade_chat.modules.automod.schemas import (
    FAIL_OPEN_REASON,
    ActionTaken,
    DirectMessageDecision,
    MessageContext,
    ModerationVerdict,
    Severity,
)

__all__ = [
    # Gate
    "AutomodGate",
    "EscalationPolicy",
    # Models
    "AutomodLog",
    # Oracle
    "AutomodError",
    "ModerationOracle",
    "OpenAIModerationOracle",
    "OracleResponseError",
    "parse_verdict",
    # Schemas
    "FAIL_OPEN_REASON",
    "ActionTaken",
    "DirectMessageDecision",
    "MessageContext",
    "ModerationVerdict",
    "Severity",
    # Router
    "router",
]
