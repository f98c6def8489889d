"""LLM provider abstraction via LiteLLM Router.

Provides the chat-completion service used by the agenda summarizer and the
action-item extractor:
- One "summary" model group configured from OPENAI_SUMMARY_MODEL
- Strict JSON-schema response_format passthrough
- Session metadata attached to every call for cost tracking

Retries are owned by the caller (services/retry.py), so the router itself is
configured with num_retries=0 to keep the attempt budget in one place.
"""

from __future__ import annotations

from typing import Any

import structlog
from litellm import Router

from src.team_admin.config import Settings

logger = structlog.get_logger(__name__)

SUMMARY_MODEL_GROUP = "summary"


def json_schema_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    """Build an OpenAI-style strict json_schema response_format."""
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "strict": True, "schema": schema},
    }


class LLMService:
    """Chat completions through a LiteLLM Router.

    Args:
        settings: Application settings; OPENAI_API_KEY is required.
    """

    def __init__(self, settings: Settings) -> None:
        settings.require("OPENAI_API_KEY")
        self.model = settings.OPENAI_SUMMARY_MODEL
        self.temperature = settings.LLM_TEMPERATURE

        self.router = Router(
            model_list=[
                {
                    "model_name": SUMMARY_MODEL_GROUP,
                    "litellm_params": {
                        "model": f"openai/{settings.OPENAI_SUMMARY_MODEL}",
                        "api_key": settings.OPENAI_API_KEY,
                    },
                },
            ],
            num_retries=0,
            timeout=settings.LLM_TIMEOUT,
        )

    async def completion(
        self,
        messages: list[dict],
        response_format: dict[str, Any] | None = None,
        temperature: float | None = None,
        metadata: dict | None = None,
    ) -> dict:
        """Execute one completion call through the LiteLLM Router.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            response_format: Optional structured-output constraint.
            temperature: Sampling temperature; defaults to LLM_TEMPERATURE.
            metadata: Additional metadata to include in the call.

        Returns:
            Dict with content, model, and usage.
        """
        kwargs: dict[str, Any] = {}
        if response_format is not None:
            kwargs["response_format"] = response_format

        response = await self.router.acompletion(
            model=SUMMARY_MODEL_GROUP,
            messages=messages,
            temperature=self.temperature if temperature is None else temperature,
            metadata=metadata or {},
            **kwargs,
        )

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return {
            "content": response.choices[0].message.content or "",
            "model": response.model,
            "usage": usage,
        }
