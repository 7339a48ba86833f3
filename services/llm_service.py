# services/llm_service.py
import asyncio
import logging
from typing import Dict, Optional

import openai
import requests

from config import settings
from core.domain import ModelParams
from core.errors import AnswerGenerationError, ValidationError
from core.interfaces import IAnswerGenerator

logger = logging.getLogger(settings.LOGGER_NAME)

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions using only the provided "
    "document excerpts. If the excerpts do not contain the answer, say so."
)


def build_prompt(query: str, context: str) -> str:
    return (
        f"Context:\n{context}\n\n"
        f"Question: {query}\n\n"
        "Answer based only on the context above."
    )


class OllamaAnswerGenerator(IAnswerGenerator):
    """Answer generation against a local Ollama API."""

    def __init__(self, base_url: str = settings.OLLAMA_BASE_URL,
                 timeout: float = settings.PROVIDER_TIMEOUT_SECONDS):
        """
        Args:
            base_url: The base URL of the Ollama API.
            timeout: The HTTP request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _generate_sync(self, prompt: str, params: ModelParams) -> str:
        try:
            logger.info(f"Sending prompt to LLM model '{params.model}'...")
            response = requests.post(
                f'{self.base_url}/api/generate',
                json={
                    'model': params.model,
                    'system': SYSTEM_PROMPT,
                    'prompt': prompt,
                    'stream': False,
                    'options': {
                        'temperature': params.temperature,
                        'num_predict': params.max_tokens,
                    },
                },
                timeout=self.timeout
            )
            response.raise_for_status()  # Raises an HTTPError for bad responses (4xx or 5xx)
            result = response.json()
        except requests.exceptions.Timeout as e:
            logger.error(f"LLM request timed out after {self.timeout} seconds.")
            raise AnswerGenerationError("LLM request timed out") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Cannot connect to LLM at {self.base_url}. Is the service running?")
            raise AnswerGenerationError("Cannot connect to LLM service") from e
        except requests.exceptions.HTTPError as e:
            logger.error(f"LLM service returned an error: {e.response.status_code} {e.response.text}")
            raise AnswerGenerationError(f"LLM error: {e.response.status_code}") from e
        except ValueError as e:
            raise AnswerGenerationError("LLM returned a non-JSON response") from e

        answer = (result.get('response') or '').strip()
        if not answer:
            logger.error("LLM response was empty or malformed.")
            raise AnswerGenerationError("Empty response from LLM")
        logger.info("Successfully received response from LLM.")
        return answer

    async def generate(self, query: str, context: str, params: ModelParams) -> str:
        return await asyncio.to_thread(self._generate_sync, build_prompt(query, context), params)


class OpenAIAnswerGenerator(IAnswerGenerator):
    """Answer generation via an OpenAI-compatible chat completions API."""

    def __init__(self, api_key: Optional[str] = settings.OPENAI_API_KEY,
                 base_url: Optional[str] = settings.OPENAI_BASE_URL,
                 timeout: float = settings.PROVIDER_TIMEOUT_SECONDS):
        client_kwargs: dict = {"api_key": api_key, "timeout": timeout}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = openai.AsyncOpenAI(**client_kwargs)

    async def generate(self, query: str, context: str, params: ModelParams) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=params.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(query, context)},
                ],
                temperature=params.temperature,
                max_tokens=params.max_tokens,
            )
        except openai.APIError as e:
            logger.error(f"OpenAI completion failed: {e}")
            raise AnswerGenerationError(f"OpenAI API error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AnswerGenerationError("OpenAI returned an empty response")
        return content.strip()


class AnswerGeneratorRouter(IAnswerGenerator):
    """Dispatches to a generator by ModelParams.provider."""

    def __init__(self, generators: Dict[str, IAnswerGenerator]):
        self._generators = dict(generators)

    @property
    def providers(self):
        return sorted(self._generators)

    async def generate(self, query: str, context: str, params: ModelParams) -> str:
        generator = self._generators.get(params.provider)
        if generator is None:
            raise ValidationError(
                f"Unknown LLM provider '{params.provider}'. Available: {', '.join(self.providers)}"
            )
        return await generator.generate(query, context, params)
