"""Moderation oracle: classifies a single message.

The gate only depends on ``ModerationOracle.classify``. The production
implementation asks an OpenAI-compatible chat model for a JSON verdict.
"""

import json
import re
from typing import Optional

from pydantic import ValidationError

from arcade_chat.modules.automod.openai_client import OpenAIClient, get_openai_client
from arcade_chat.modules.automod.prompts import (
    MESSAGE_KINDS,
    MODERATION_SYSTEM,
    MODERATION_SYSTEM_DM_SUFFIX,
    MODERATION_USER,
)
from arcade_chat.modules.automod.schemas import OK_REASON, MessageContext, ModerationVerdict

# Models wrap JSON in prose or code fences; take the outermost object
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class AutomodError(Exception):
    """Base exception for automod errors."""
    pass


class OracleResponseError(AutomodError):
    """The oracle answered with something that is not a usable verdict."""
    pass


def parse_verdict(raw: Optional[str]) -> ModerationVerdict:
    """Extract and validate a verdict from raw model output.

    Args:
        raw: Completion text

    Returns:
        ModerationVerdict

    Raises:
        OracleResponseError: If no valid verdict object can be read
    """
    match = _JSON_OBJECT_RE.search(raw or "")
    if not match:
        raise OracleResponseError("Could not find a JSON object in oracle response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"Oracle response is not valid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("allowed"), bool):
        raise OracleResponseError("Oracle response has no boolean 'allowed' field")

    if isinstance(data.get("severity"), str):
        data["severity"] = data["severity"].strip().lower()
    elif data.get("severity") is None:
        data.pop("severity", None)
    if data.get("allowed") is True and not data.get("reason"):
        data["reason"] = OK_REASON

    try:
        return ModerationVerdict.model_validate(data)
    except ValidationError as e:
        raise OracleResponseError(f"Invalid oracle verdict: {e.error_count()} errors") from e


class ModerationOracle:
    """Interface for message classifiers."""

    async def classify(self, content: str, context: MessageContext) -> ModerationVerdict:
        raise NotImplementedError


class OpenAIModerationOracle(ModerationOracle):
    """Classifier backed by an OpenAI-compatible chat completion."""

    def __init__(self, openai_client: Optional[OpenAIClient] = None):
        self._openai_client = openai_client

    @property
    def openai_client(self) -> OpenAIClient:
        """Lazily resolved so a missing API key surfaces per call, not at startup."""
        if self._openai_client is None:
            self._openai_client = get_openai_client()
        return self._openai_client

    def build_prompts(self, content: str, context: MessageContext) -> tuple[str, str]:
        system_prompt = MODERATION_SYSTEM
        if context == MessageContext.DM:
            system_prompt += MODERATION_SYSTEM_DM_SUFFIX
        user_prompt = MODERATION_USER.format(kind=MESSAGE_KINDS[context.value], content=content)
        return system_prompt, user_prompt

    async def classify(self, content: str, context: MessageContext) -> ModerationVerdict:
        system_prompt, user_prompt = self.build_prompts(content, context)
        raw = await self.openai_client.generate_completion(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
        )
        verdict = parse_verdict(raw)

        # Content rewriting is a direct message remediation only
        if context != MessageContext.DM and verdict.filtered_content is not None:
            verdict = verdict.model_copy(update={"filtered_content": None})
        return verdict
