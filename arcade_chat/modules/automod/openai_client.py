"""OpenAI API client wrapper for the moderation oracle.

Works against OpenAI itself or any OpenAI-compatible gateway set through
OPENAI_BASE_URL.
"""

from typing import Any, Optional

from openai import AsyncOpenAI

from arcade_chat.core.config import settings


class OpenAIClientError(Exception):
    """Base exception for OpenAI client errors."""
    pass


class OpenAIClient:
    """Wrapper for the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ):
        """Initialize OpenAI client.

        Args:
            api_key: API key. Uses settings if not provided.
            base_url: Gateway URL. Uses settings if not provided.
            model: Model name. Uses settings if not provided.

        Raises:
            OpenAIClientError: If no API key is configured
        """
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = base_url or settings.OPENAI_BASE_URL
        self.model = model or settings.OPENAI_MODEL
        self.max_tokens = settings.OPENAI_MAX_TOKENS
        self.temperature = settings.OPENAI_TEMPERATURE

        if not self.api_key:
            raise OpenAIClientError("OpenAI API key not configured")

        # Retries are off: the gate makes a single bounded attempt
        self._client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=0,
        )

    async def generate_completion(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
    ) -> str:
        """Generate a completion.

        Args:
            system_prompt: System message for context
            user_prompt: User message/query
            temperature: Override default temperature
            max_tokens: Override default max tokens
            response_format: Optional response format (e.g., {"type": "json_object"})

        Returns:
            str: Generated completion text

        Raises:
            OpenAIClientError: If API call fails
        """
        try:
            kwargs: dict[str, Any] = {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": self.temperature if temperature is None else temperature,
                "max_tokens": max_tokens or self.max_tokens,
            }
            if response_format:
                kwargs["response_format"] = response_format

            response = await self._client.chat.completions.create(**kwargs)

            if not response.choices:
                raise OpenAIClientError("No response generated")

            return response.choices[0].message.content or ""

        except OpenAIClientError:
            raise
        except Exception as e:
            raise OpenAIClientError(f"OpenAI API error: {str(e)}") from e

    async def close(self) -> None:
        await self._client.close()


_client: Optional[OpenAIClient] = None


def get_openai_client() -> OpenAIClient:
    """Get or create the OpenAI client singleton.

    Raises:
        OpenAIClientError: If no API key is configured
    """
    global _client
    if _client is None:
        _client = OpenAIClient()
    return _client
