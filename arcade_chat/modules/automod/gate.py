"""Automod gate.

Runs the moderation oracle on chat messages and applies the consequences
of a denial. The gate never raises and never blocks chat on classifier
trouble: timeouts, transport errors and malformed answers all produce the
fail-open verdict. Bookkeeping (audit records, redaction, escalation) is
best effort and is logged rather than propagated.

Two strategies are selected by message context:

* global channel: the message is persisted first and reviewed in the
  background; high severity redacts the stored row.
* direct message: the verdict is awaited before persistence; high severity
  blocks the send and the oracle's filtered text replaces the original.
"""

import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arcade_chat.core.config import settings
from arcade_chat.core.database import async_session_maker, utcnow
from arcade_chat.core.logging import log_error, log_info, log_warning
from arcade_chat.core.metrics import (
    AUTOMOD_ORACLE_DURATION_SECONDS,
    AUTOMOD_PENDING_REVIEWS,
    AUTOMOD_REDACTIONS_TOTAL,
    AUTOMOD_VERDICTS_TOTAL,
)
from arcade_chat.core.tracing import (
    ATTR_AUTOMOD_ALLOWED,
    ATTR_AUTOMOD_CONTEXT,
    ATTR_AUTOMOD_SEVERITY,
    create_span,
)
from arcade_chat.modules.automod.models import AutomodLog
from arcade_chat.modules.automod.oracle import ModerationOracle
from arcade_chat.modules.automod.repository import AutomodLogRepository
from arcade_chat.modules.automod.schemas import (
    ActionTaken,
    AutomodRequest,
    AutomodResponse,
    DirectMessageDecision,
    MessageContext,
    ModerationVerdict,
    Severity,
)
from arcade_chat.modules.chat.realtime import ChangeFeed, ChangeFeedError
from arcade_chat.modules.chat.repository import GlobalMessageRepository
from arcade_chat.modules.chat.schemas import (
    GLOBAL_MESSAGES_TABLE,
    ChangeEventType,
    MessageRecord,
    normalize_content,
)
from arcade_chat.modules.moderation.models import ModerationAction
from arcade_chat.modules.moderation.service import ModerationService, UserNotFoundError

logger = logging.getLogger(__name__)


class EscalationPolicy:
    """Automatic timeouts for users who keep getting blocked.

    Once a user reaches ``threshold`` blocked messages inside the window,
    each further block times them out for ``base * 4 ** (count - threshold)``
    minutes, capped at ``max_minutes``.
    """

    def __init__(
        self,
        enabled: Optional[bool] = None,
        threshold: Optional[int] = None,
        window_minutes: Optional[int] = None,
        base_minutes: Optional[int] = None,
        max_minutes: Optional[int] = None,
    ):
        self.enabled = settings.AUTOMOD_ESCALATION_ENABLED if enabled is None else enabled
        self.threshold = settings.AUTOMOD_ESCALATION_THRESHOLD if threshold is None else threshold
        self.window_minutes = settings.AUTOMOD_ESCALATION_WINDOW_MINUTES if window_minutes is None else window_minutes
        self.base_minutes = settings.AUTOMOD_ESCALATION_BASE_MINUTES if base_minutes is None else base_minutes
        self.max_minutes = settings.AUTOMOD_ESCALATION_MAX_MINUTES if max_minutes is None else max_minutes

    def timeout_minutes(self, blocked_count: int) -> Optional[int]:
        """Timeout length for a user with ``blocked_count`` recent blocks, or None."""
        if not self.enabled or blocked_count < self.threshold:
            return None
        return min(self.base_minutes * 4 ** (blocked_count - self.threshold), self.max_minutes)


class AutomodGate:
    """Orchestrates oracle calls and their side effects."""

    def __init__(
        self,
        oracle: ModerationOracle,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        feed: Optional[ChangeFeed] = None,
        timeout_seconds: Optional[float] = None,
        scrub_content: Optional[bool] = None,
        redacted_content: Optional[str] = None,
        escalation: Optional[EscalationPolicy] = None,
        enabled: Optional[bool] = None,
        system_moderator_id: Optional[uuid.UUID] = None,
    ):
        self.oracle = oracle
        self.session_maker = session_maker or async_session_maker
        self.feed = feed
        self.timeout_seconds = settings.AUTOMOD_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.scrub_content = settings.AUTOMOD_SCRUB_CONTENT if scrub_content is None else scrub_content
        self.redacted_content = settings.AUTOMOD_REDACTED_CONTENT if redacted_content is None else redacted_content
        self.escalation = escalation or EscalationPolicy()
        self.enabled = settings.AUTOMOD_ENABLED if enabled is None else enabled
        self.system_moderator_id = system_moderator_id or settings.SYSTEM_MODERATOR_ID
        self._pending: set[asyncio.Task] = set()

    # ============================================
    # Classification
    # ============================================

    async def classify(self, content: str, context: MessageContext) -> ModerationVerdict:
        """Ask the oracle once, bounded by the timeout. Fails open."""
        if not self.enabled:
            return ModerationVerdict(allowed=True)

        start = time.perf_counter()
        try:
            with create_span("automod.classify", attributes={ATTR_AUTOMOD_CONTEXT: context.value}) as span:
                verdict = await asyncio.wait_for(
                    self.oracle.classify(content, context),
                    timeout=self.timeout_seconds,
                )
                if not isinstance(verdict, ModerationVerdict):
                    raise TypeError(f"Oracle returned {type(verdict).__name__}, expected ModerationVerdict")
                span.set_attribute(ATTR_AUTOMOD_ALLOWED, verdict.allowed)
                span.set_attribute(ATTR_AUTOMOD_SEVERITY, verdict.severity.value)
        except asyncio.TimeoutError:
            log_warning(
                logger,
                "Moderation oracle timed out, failing open",
                context=context.value,
                timeout_seconds=self.timeout_seconds,
            )
            AUTOMOD_VERDICTS_TOTAL.labels(context=context.value, outcome="fail_open").inc()
            return ModerationVerdict.fail_open()
        except Exception as e:
            log_warning(
                logger,
                "Moderation oracle failed, failing open",
                context=context.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            AUTOMOD_VERDICTS_TOTAL.labels(context=context.value, outcome="fail_open").inc()
            return ModerationVerdict.fail_open()
        finally:
            AUTOMOD_ORACLE_DURATION_SECONDS.labels(context=context.value).observe(
                time.perf_counter() - start
            )

        outcome = "allowed" if verdict.allowed else verdict.action_taken.value
        AUTOMOD_VERDICTS_TOTAL.labels(context=context.value, outcome=outcome).inc()
        return verdict

    async def evaluate(
        self,
        content: str,
        author_id: uuid.UUID,
        context: MessageContext,
        message_id: Optional[uuid.UUID] = None,
    ) -> ModerationVerdict:
        """Classify a message and apply the consequences of a denial.

        Args:
            content: Message text
            author_id: Sender
            context: Global channel or direct message
            message_id: Stored message id, when already persisted

        Returns:
            The effective verdict
        """
        verdict = await self.classify(content, context)
        if verdict.allowed:
            return verdict

        await self._record_denial(content, author_id, context, message_id, verdict)

        if verdict.severity == Severity.HIGH and context == MessageContext.GLOBAL and message_id:
            await self.redact_message(message_id, author_id)

        if verdict.action_taken == ActionTaken.BLOCKED:
            await self._escalate(author_id)

        return verdict

    # ============================================
    # Strategies
    # ============================================

    async def screen_direct_message(self, content: str, sender_id: uuid.UUID) -> DirectMessageDecision:
        """Decide a direct message before it is stored."""
        verdict = await self.evaluate(content, sender_id, MessageContext.DM)

        if not verdict.allowed and verdict.severity == Severity.HIGH:
            return DirectMessageDecision(blocked=True, reason=verdict.reason, verdict=verdict)

        final_content = content
        if verdict.filtered_content:
            try:
                final_content = normalize_content(verdict.filtered_content)
            except ValueError:
                log_warning(logger, "Ignoring unusable filtered content from oracle")

        return DirectMessageDecision(
            blocked=False,
            reason=verdict.reason,
            content=final_content,
            verdict=verdict,
        )

    async def screen_global_message(self, content: str, author_id: uuid.UUID) -> ModerationVerdict:
        """Hold-then-decide: evaluate a global message before it is stored."""
        return await self.evaluate(content, author_id, MessageContext.GLOBAL)

    def schedule_review(
        self,
        content: str,
        author_id: uuid.UUID,
        message_id: uuid.UUID,
    ) -> asyncio.Task:
        """Expose-then-correct: review a stored global message in the background.

        The task is owned by the gate, not the request, so it completes even
        if the sender disconnects.
        """
        task = asyncio.create_task(
            self.evaluate(content, author_id, MessageContext.GLOBAL, message_id)
        )
        self._pending.add(task)
        AUTOMOD_PENDING_REVIEWS.inc()
        task.add_done_callback(self._review_done)
        return task

    def _review_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        AUTOMOD_PENDING_REVIEWS.dec()
        if not task.cancelled() and task.exception() is not None:
            log_error(logger, "Background automod review failed", exception=task.exception())

    @property
    def pending_reviews(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled review to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def handle_request(self, request: AutomodRequest) -> AutomodResponse:
        """Function-style invocation used by the HTTP endpoint."""
        if request.type == MessageContext.DM:
            decision = await self.screen_direct_message(request.content, request.user_id)
            verdict = decision.verdict
            return AutomodResponse(
                allowed=verdict.allowed,
                reason=verdict.reason,
                severity=None if verdict.allowed else verdict.severity,
                filtered_content=decision.content if decision.content != request.content else None,
                blocked=True if decision.blocked else None,
            )

        verdict = await self.evaluate(
            request.content,
            request.user_id,
            MessageContext.GLOBAL,
            request.message_id,
        )
        return AutomodResponse(
            allowed=verdict.allowed,
            reason=verdict.reason,
            severity=None if verdict.allowed else verdict.severity,
        )

    # ============================================
    # Side effects
    # ============================================

    async def redact_message(
        self,
        message_id: uuid.UUID,
        author_id: Optional[uuid.UUID] = None,
    ) -> Optional[MessageRecord]:
        """Soft-delete (and scrub) a global message, then announce the change.

        Safe to repeat: a second call leaves the row as the first did.

        Args:
            message_id: Message to redact
            author_id: When given, the message must belong to this user
        """
        placeholder = self.redacted_content if self.scrub_content else None
        try:
            async with self.session_maker() as session:
                repo = GlobalMessageRepository(session)
                message = await repo.get_by_id(message_id)
                if message is None:
                    log_warning(logger, "Automod redaction target not found", message_id=str(message_id))
                    return None
                if author_id is not None and message.author_id != author_id:
                    log_warning(
                        logger,
                        "Automod redaction skipped, message has a different author",
                        message_id=str(message_id),
                        user_id=str(author_id),
                    )
                    return None
                message = await repo.redact(message_id, placeholder)
                await session.commit()
        except Exception as e:
            log_error(logger, "Automod redaction failed", exception=e, message_id=str(message_id))
            return None

        record = MessageRecord.model_validate(message)
        AUTOMOD_REDACTIONS_TOTAL.inc()
        log_info(logger, "Message redacted by automod", message_id=str(message_id))

        if self.feed is not None:
            try:
                await self.feed.publish(
                    GLOBAL_MESSAGES_TABLE,
                    ChangeEventType.UPDATE,
                    record.model_dump(mode="json"),
                )
            except ChangeFeedError as e:
                # Subscribers converge on their next catch-up fetch
                log_error(logger, "Failed to publish redaction", exception=e, message_id=str(message_id))
        return record

    async def _record_denial(
        self,
        content: str,
        author_id: uuid.UUID,
        context: MessageContext,
        message_id: Optional[uuid.UUID],
        verdict: ModerationVerdict,
    ) -> None:
        try:
            async with self.session_maker() as session:
                await AutomodLogRepository(session).create(
                    AutomodLog(
                        message_id=message_id,
                        user_id=author_id,
                        context=context.value,
                        original_content=content,
                        flagged_reason=verdict.reason,
                        severity=verdict.severity.value,
                        action_taken=verdict.action_taken.value,
                    )
                )
                await session.commit()
        except Exception as e:
            log_error(
                logger,
                "Failed to write automod audit record",
                exception=e,
                user_id=str(author_id),
                message_id=str(message_id) if message_id else None,
            )

    async def _escalate(self, author_id: uuid.UUID) -> None:
        """Time out repeat offenders through the moderation service."""
        if not self.escalation.enabled:
            return

        try:
            async with self.session_maker() as session:
                since = utcnow() - timedelta(minutes=self.escalation.window_minutes)
                blocked_count = await AutomodLogRepository(session).count_for_user_since(
                    author_id, ActionTaken.BLOCKED.value, since
                )
                minutes = self.escalation.timeout_minutes(blocked_count)
                if minutes is None:
                    return

                service = ModerationService(session, system_moderator_id=self.system_moderator_id)
                if await service.is_user_suspended(author_id):
                    return

                await service.apply_action(
                    target_user_id=author_id,
                    actor_id=self.system_moderator_id,
                    action=ModerationAction.TIMEOUT,
                    reason=f"automod: {blocked_count} blocked messages",
                    duration_minutes=minutes,
                )
        except UserNotFoundError:
            log_info(logger, "Skipping escalation for user without profile", user_id=str(author_id))
        except Exception as e:
            log_error(logger, "Automod escalation failed", exception=e, user_id=str(author_id))
