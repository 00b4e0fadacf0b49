"""Completion providers: rendered prompt in, generated answer out."""

from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from ragreport.core.config import Settings
from ragreport.core.errors import ProviderError
from ragreport.core.logging import get_logger
from ragreport.embeddings.embeddings import openai_client

logger = get_logger(__name__)

EMPTY_ANSWER = "No answer provided."


class CompletionProvider(Protocol):
    async def complete(self, prompt: str) -> str: ...


class OpenAICompletion:
    """Chat completions from OpenAI or an Azure OpenAI deployment."""

    def __init__(self, client: AsyncOpenAI, model: str, temperature: float = 0.0):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def complete(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as exc:
            raise ProviderError(f"Completion request to {self.model} failed: {exc}") from exc

        if not response.choices:
            return EMPTY_ANSWER
        content = (response.choices[0].message.content or "").strip()
        return content or EMPTY_ANSWER


def get_completion_provider(settings: Settings) -> CompletionProvider:
    backend = settings.COMPLETION_BACKEND
    model = settings.COMPLETION_MODEL
    if backend == "azure" and settings.AZURE_OPENAI_CHAT_DEPLOYMENT_NAME:
        model = settings.AZURE_OPENAI_CHAT_DEPLOYMENT_NAME
    logger.info(f"Using {backend} completions with model {model}")
    return OpenAICompletion(openai_client(settings, backend), model, settings.COMPLETION_TEMPERATURE)
