"""Rolling summary model clients.

Two interchangeable summarizers, both single-shot and non-streaming:
- ResponsesPromptSummarizer: OpenAI Responses API with a hosted prompt template
  (used when PROMPT_ID_SUMMARY_GLOBAL is configured)
- AgentSummarizer: pydantic-ai Agent with a built-in instruction and
  MEMORY_SUMMARIZER_MODEL (used otherwise)

Both return plain text. Errors propagate to the compactor, which turns them
into a no-op compaction.
"""

import os
from typing import Any, Protocol

from loguru import logger
from openai import AsyncOpenAI
from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIModel

from chatmemory.config.settings import settings

SUMMARY_INTENT = "conversation_memory_summary"


def _get_summary_instructions() -> str:
    """Instruction used when no hosted prompt template is configured."""
    return """You maintain the rolling memory of a conversation between a user and an assistant.
You receive the EXISTING_SUMMARY (or NONE) and NEW_TURNS that are about to leave the visible context.
Rewrite the summary so it covers both.
Keep the user's goals, constraints, decisions, open questions and any facts they stated.
Drop small talk and repetition.
Write compact plain text. No preamble. No markdown headings.
Stay under 350 words."""


class Summarizer(Protocol):
    async def summarize(self, input_text: str, *, chat_id: str, turn_count: int) -> str: ...


def _read(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_response_text(response: Any) -> str:
    """Extract the output text of a Responses API result.

    Looks at output_text first (string or list of strings), then at the first
    non-empty text/value chunk under output[*].content[*].

    Args:
        response: Responses API result (SDK object or plain dict)

    Returns:
        Stripped output text, or "" when none is found
    """
    if not response:
        return ""

    output_text = _read(response, "output_text")
    if isinstance(output_text, str):
        return output_text.strip()
    if isinstance(output_text, list):
        joined = "\n".join(str(part) for part in output_text).strip()
        if joined:
            return joined

    output = _read(response, "output")
    if isinstance(output, list):
        for item in output:
            content = _read(item, "content")
            if not isinstance(content, list):
                continue
            for chunk in content:
                for field_name in ("text", "value"):
                    value = _read(chunk, field_name)
                    if isinstance(value, str) and value.strip():
                        return value.strip()

    return ""


class ResponsesPromptSummarizer:
    """Summarizer backed by a hosted prompt template on the OpenAI Responses API."""

    def __init__(self, prompt_id: str, prompt_version: str | None = None, client: AsyncOpenAI | None = None) -> None:
        if not prompt_id:
            raise ValueError("prompt_id is required for ResponsesPromptSummarizer")
        self.prompt_id = prompt_id
        self.prompt_version = prompt_version
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key or None)
        return self._client

    def prompt_reference(self) -> dict[str, str]:
        reference = {"id": self.prompt_id}
        if self.prompt_version:
            reference["version"] = self.prompt_version
        return reference

    async def summarize(self, input_text: str, *, chat_id: str, turn_count: int) -> str:
        response = await self.client.responses.create(
            prompt=self.prompt_reference(),
            input=input_text,
            stream=False,
            metadata={
                "intent": SUMMARY_INTENT,
                "chat_id": chat_id,
                "turns_compressed": str(turn_count),
            },
        )
        return extract_response_text(response)


class AgentSummarizer:
    """Summarizer backed by a pydantic-ai Agent with a built-in instruction."""

    def __init__(self, model_name: str, agent: Agent | None = None) -> None:
        self.model_name = model_name
        self._agent = agent

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            # pydantic_ai reads the key from the environment
            if settings.openai_api_key and not os.getenv("OPENAI_API_KEY"):
                os.environ["OPENAI_API_KEY"] = settings.openai_api_key
            self._agent = Agent(
                model=OpenAIModel(self.model_name),
                system_prompt=_get_summary_instructions(),
                output_type=str,
            )
        return self._agent

    async def summarize(self, input_text: str, *, chat_id: str, turn_count: int) -> str:
        logger.debug(
            "Calling summarizer agent",
            chat_id=chat_id,
            turns=turn_count,
            model=self.model_name,
        )
        result = await self.agent.run(input_text)
        output = result.output
        return output.strip() if isinstance(output, str) else ""


def get_default_summarizer() -> Summarizer:
    """Pick the summarizer from settings.

    Returns:
        ResponsesPromptSummarizer if a hosted prompt id is configured,
        otherwise AgentSummarizer on the configured summarizer model
    """
    if settings.summary_prompt_id:
        return ResponsesPromptSummarizer(settings.summary_prompt_id, settings.summary_prompt_version)
    logger.info(
        "No hosted summary prompt configured, using built-in summarizer instructions",
        model=settings.memory_summarizer_model,
    )
    return AgentSummarizer(settings.memory_summarizer_model)
