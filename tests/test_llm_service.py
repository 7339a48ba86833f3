"""Answer generators: Ollama over requests, provider routing."""

from types import SimpleNamespace

import pytest
import requests

from core.domain import ErrorCode, ModelParams
from core.errors import AnswerGenerationError, ValidationError
from services.llm_service import (
    AnswerGeneratorRouter, OllamaAnswerGenerator, OpenAIAnswerGenerator, build_prompt,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)

    def json(self):
        return self.payload


PARAMS = ModelParams(provider="ollama", model="llama3", temperature=0.2, max_tokens=128)


class TestOllama:
    @pytest.mark.asyncio
    async def test_posts_prompt_and_returns_answer(self, monkeypatch):
        sent = {}

        def fake_post(url, json, timeout):
            sent.update(url=url, json=json, timeout=timeout)
            return FakeResponse({"response": "  Apples grow on trees.  "})

        monkeypatch.setattr(requests, "post", fake_post)
        generator = OllamaAnswerGenerator(base_url="http://llm:11434/", timeout=5)

        answer = await generator.generate("Where?", "[Source: a, chunk: 0]\ntext", PARAMS)

        assert answer == "Apples grow on trees."
        assert sent["url"] == "http://llm:11434/api/generate"
        assert sent["json"]["model"] == "llama3"
        assert sent["json"]["prompt"] == build_prompt("Where?", "[Source: a, chunk: 0]\ntext")
        assert sent["json"]["options"] == {"temperature": 0.2, "num_predict": 128}
        assert sent["timeout"] == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("down"),
    ])
    async def test_transport_errors(self, monkeypatch, failure):
        def fake_post(*args, **kwargs):
            raise failure

        monkeypatch.setattr(requests, "post", fake_post)
        with pytest.raises(AnswerGenerationError) as exc:
            await OllamaAnswerGenerator().generate("q", "c", PARAMS)
        assert exc.value.error_code == ErrorCode.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_http_error(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse({}, status_code=500))
        with pytest.raises(AnswerGenerationError, match="500"):
            await OllamaAnswerGenerator().generate("q", "c", PARAMS)

    @pytest.mark.asyncio
    async def test_empty_answer(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse({"response": "   "}))
        with pytest.raises(AnswerGenerationError):
            await OllamaAnswerGenerator().generate("q", "c", PARAMS)


class TestRouter:
    @pytest.mark.asyncio
    async def test_dispatches_by_provider(self, answer_generator):
        router = AnswerGeneratorRouter({"ollama": answer_generator})
        assert await router.generate("q", "c", PARAMS) == answer_generator.answer
        assert router.providers == ["ollama"]

    @pytest.mark.asyncio
    async def test_unknown_provider(self, answer_generator):
        router = AnswerGeneratorRouter({"ollama": answer_generator})
        with pytest.raises(ValidationError, match="unknown-llm"):
            await router.generate("q", "c", ModelParams(provider="unknown-llm", model="m"))


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_chat_completion(self):
        generator = OpenAIAnswerGenerator(api_key="test-key")
        completions = FakeCompletions("  Grounded answer. ")
        generator._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))

        answer = await generator.generate("q", "ctx", ModelParams(provider="openai", model="gpt-x"))

        assert answer == "Grounded answer."
        assert completions.kwargs["model"] == "gpt-x"
        assert completions.kwargs["messages"][1]["content"] == build_prompt("q", "ctx")

    @pytest.mark.asyncio
    async def test_empty_completion(self):
        generator = OpenAIAnswerGenerator(api_key="test-key")
        generator._client = SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(None)))
        with pytest.raises(AnswerGenerationError):
            await generator.generate("q", "ctx", ModelParams(provider="openai", model="gpt-x"))
