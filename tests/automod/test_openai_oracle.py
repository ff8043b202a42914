"""Tests for the OpenAI-backed moderation oracle."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from arcade_chat.modules.automod.oracle import OpenAIModerationOracle, OracleResponseError
from arcade_chat.modules.automod.prompts import MODERATION_SYSTEM_DM_SUFFIX
from arcade_chat.modules.automod.schemas import MessageContext, Severity


def create_mock_client(payload) -> MagicMock:
    """Mock OpenAIClient answering with the given payload."""
    mock_client = MagicMock()
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    mock_client.generate_completion = AsyncMock(return_value=raw)
    return mock_client


class TestOpenAIModerationOracle:

    def test_dm_prompt_offers_filtered_content(self):
        oracle = OpenAIModerationOracle(openai_client=MagicMock())

        dm_system, dm_user = oracle.build_prompts("hi there", MessageContext.DM)
        global_system, global_user = oracle.build_prompts("hi there", MessageContext.GLOBAL)

        assert dm_system.endswith(MODERATION_SYSTEM_DM_SUFFIX)
        assert "filteredContent" not in global_system
        assert dm_user == 'Moderate this direct message: "hi there"'
        assert global_user == 'Moderate this chat message: "hi there"'

    @pytest.mark.asyncio
    async def test_classify_returns_parsed_verdict(self):
        mock_client = create_mock_client({"allowed": False, "reason": "hate speech", "severity": "high"})
        oracle = OpenAIModerationOracle(openai_client=mock_client)

        verdict = await oracle.classify("something awful", MessageContext.GLOBAL)

        assert verdict.allowed is False
        assert verdict.severity == Severity.HIGH
        mock_client.generate_completion.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_filtered_content_kept_only_for_direct_messages(self):
        payload = {"allowed": False, "reason": "profanity", "severity": "low", "filteredContent": "well ****"}

        dm = await OpenAIModerationOracle(openai_client=create_mock_client(payload)).classify(
            "well damn", MessageContext.DM
        )
        channel = await OpenAIModerationOracle(openai_client=create_mock_client(payload)).classify(
            "well damn", MessageContext.GLOBAL
        )

        assert dm.filtered_content == "well ****"
        assert channel.filtered_content is None

    @pytest.mark.asyncio
    async def test_unparseable_answer_raises(self):
        oracle = OpenAIModerationOracle(openai_client=create_mock_client("I cannot help with that."))

        with pytest.raises(OracleResponseError):
            await oracle.classify("hello", MessageContext.GLOBAL)
