"""Study material generators. Ollama primary; a fake for tests."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from scibrain.services.generation import prompts

logger = logging.getLogger("scibrain.generator")


@dataclass
class StudyGenerationError(Exception):
    """Structured error from a generator. Never expose raw tracebacks."""
    kind: str  # timeout | unavailable | invalid_json | provider_error
    message: str
    details: Optional[Dict[str, Any]] = None


class StudyGenerator(ABC):
    """Turns source text into a reviewer or a quiz question set."""

    name: str = "base"

    @abstractmethod
    async def generate_reviewer(self, text: str, title: str) -> Dict[str, Any]:
        """Return ``title``, ``sections``, ``concepts``, ``metadata``, ``originalText``."""
        ...

    @abstractmethod
    async def generate_quiz_questions(self, text: str, concepts: List[Any]) -> Dict[str, Any]:
        """Return an opaque question payload."""
        ...


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text


class OllamaGenerator(StudyGenerator):
    """Ollama HTTP API generator."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2",
        timeout_s: int = 120,
        max_input_chars: int = 12000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self.max_input_chars = max_input_chars
        self.transport = transport
        self.name = "ollama"

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_input_chars:
            return text[: self.max_input_chars] + "..."
        return text

    async def _generate_json(self, system_prompt: str, user_prompt: str, schema_hint: str) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "prompt": f"{system_prompt}\n\n{schema_hint}\n\n{user_prompt}",
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.3},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TimeoutException as e:
            raise StudyGenerationError(kind="timeout", message="Model request timed out", details={"error": str(e)})
        except httpx.ConnectError as e:
            raise StudyGenerationError(kind="unavailable", message="Cannot connect to Ollama", details={"error": str(e)})
        except httpx.HTTPError as e:
            logger.exception("Ollama request failed")
            raise StudyGenerationError(kind="provider_error", message="Model request failed", details={"error": str(e)})
        if resp.status_code != 200:
            raise StudyGenerationError(
                kind="provider_error",
                message=f"Ollama returned {resp.status_code}",
                details={"status": resp.status_code, "body": resp.text[:200]},
            )
        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise StudyGenerationError(kind="invalid_json", message="Invalid response from model", details={"error": str(e)})
        text = data.get("response", "")
        if not text:
            raise StudyGenerationError(kind="invalid_json", message="Empty response from model")
        try:
            parsed = json.loads(_strip_code_fence(text))
        except json.JSONDecodeError as e:
            raise StudyGenerationError(kind="invalid_json", message="Model output is not valid JSON", details={"error": str(e)})
        if not isinstance(parsed, dict):
            raise StudyGenerationError(kind="invalid_json", message="Model output is not a JSON object")
        return parsed

    async def generate_reviewer(self, text: str, title: str) -> Dict[str, Any]:
        system, user, schema = prompts.reviewer_prompt(self._truncate(text), title)
        out = await self._generate_json(system, user, schema)
        return {
            "title": title,
            "sections": out.get("sections") or [],
            "concepts": out.get("concepts") or [],
            "metadata": {
                "wordCount": len(text.split()),
                "provider": self.name,
                "model": self.model,
            },
            "originalText": text,
        }

    async def generate_quiz_questions(self, text: str, concepts: List[Any]) -> Dict[str, Any]:
        system, user, schema = prompts.quiz_prompt(self._truncate(text), concepts)
        return await self._generate_json(system, user, schema)


class FakeGenerator(StudyGenerator):
    """Test double: deterministic output built from the input."""

    def __init__(self, questions: Optional[Dict[str, Any]] = None, error: Optional[StudyGenerationError] = None):
        self.questions = questions
        self.error = error
        self.name = "fake"

    async def generate_reviewer(self, text: str, title: str) -> Dict[str, Any]:
        if self.error:
            raise self.error
        words = text.split()
        return {
            "title": title,
            "sections": [{"heading": title, "points": [text[:80]] if text else []}],
            "concepts": [{"term": w, "definition": ""} for w in words[:3]],
            "metadata": {"wordCount": len(words), "provider": self.name},
            "originalText": text,
        }

    async def generate_quiz_questions(self, text: str, concepts: List[Any]) -> Dict[str, Any]:
        if self.error:
            raise self.error
        if self.questions is not None:
            return self.questions
        return {
            "multipleChoice": [],
            "trueFalse": [{"statement": text[:80], "answer": True}],
            "identification": [],
        }


_generator: Optional[StudyGenerator] = None


def get_generator(settings) -> StudyGenerator:
    """Configured generator, cached process-wide."""
    global _generator
    if _generator is None:
        provider_name = getattr(settings, "ai_provider", "ollama")
        if provider_name != "ollama":
            logger.warning("Unknown AI_PROVIDER %r, using ollama", provider_name)
        _generator = OllamaGenerator(
            base_url=getattr(settings, "ollama_base_url", "http://localhost:11434"),
            model=getattr(settings, "ollama_model", "llama3.2"),
            timeout_s=getattr(settings, "ollama_timeout_s", 120),
            max_input_chars=getattr(settings, "max_input_chars", 12000),
        )
    return _generator


def reset_generator() -> None:
    """Reset cached generator (for tests)."""
    global _generator
    _generator = None
