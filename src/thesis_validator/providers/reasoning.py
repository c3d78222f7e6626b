"""
Reasoning provider abstraction.

A reasoning provider turns a prompt plus structured context into a list of
candidate objects (hypotheses, evidence, contradictions, scenarios or
vulnerabilities, depending on the phase). The engine treats it as opaque: it
may fail or hang, and the caller bounds every call with a timeout.
"""

import asyncio
import json
import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Any

from thesis_validator.config import get_settings
from thesis_validator.providers.json_repair import parse_candidates

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"


class ReasoningError(Exception):
    """Raised when the reasoning backend cannot produce an answer."""

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


class ReasoningProvider(ABC):
    """Abstract base class for reasoning providers."""

    @abstractmethod
    async def generate(self, prompt: str, context: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Generate structured candidates.

        Args:
            prompt: Instruction for this phase.
            context: Structured inputs, e.g. the thesis, existing hypotheses
                or the requested number of items. ``context["kind"]`` names
                the kind of candidate expected.

        Returns:
            Candidate objects. Field names follow the kind requested.

        Raises:
            ReasoningError: If the backend fails.
        """
        ...

    async def close(self) -> None:
        """Release resources held by the provider."""
        return None


# Output shape requested for each candidate kind
CANDIDATE_SCHEMAS: dict[str, dict[str, str]] = {
    "hypothesis": {
        "type": "one of lever, assumption, risk, dependency",
        "content": "the hypothesis statement",
        "confidence": "number between 0 and 1",
        "importance": "one of critical, high, medium, low",
        "testability": "one of easy, moderate, difficult",
    },
    "evidence": {
        "content": "the observation",
        "source_type": "one of web, document, expert, data, filing, financial",
        "sentiment": "one of supporting, neutral, contradicting",
        "credibility": "number between 0 and 1",
        "hypothesis_index": "index of the hypothesis it bears on",
        "relevance": "number between 0 and 1",
        "source_title": "optional title of the source",
        "source_url": "optional URL of the source",
    },
    "contradiction": {
        "description": "what conflicts with what",
        "severity": "one of low, medium, high",
        "hypothesis_index": "index of the contradicted hypothesis",
        "evidence_index": "optional index of the contradicting evidence",
        "bear_case_theme": "short theme tag",
    },
    "scenario": {
        "name": "short scenario name",
        "description": "what happens",
        "outcome": "how the thesis fares",
        "impact_score": "number between 0 and 1",
    },
    "vulnerability": {
        "area": "thesis area affected",
        "description": "the weakness",
        "severity": "one of low, medium, high",
        "mitigation": "suggested mitigation",
    },
}


class OllamaReasoningProvider(ReasoningProvider):
    """
    Reasoning provider backed by a local Ollama model.

    Runs ``ollama run <model>`` in a worker thread with the prompt on stdin
    and parses the reply tolerantly.
    """

    def __init__(
        self,
        model: str | None = None,
        max_retries: int | None = None,
        timeout: int | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            model: Ollama model name (uses config if not provided).
            max_retries: Retries on CLI failure (uses config if not provided).
            timeout: Timeout in seconds per CLI run (uses config if not provided).
        """
        settings = get_settings()
        self._model = model or settings.llm_model_name or DEFAULT_OLLAMA_MODEL
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._timeout = timeout or settings.llm_timeout

        logger.info(f"Initialized Ollama reasoning provider with model: {self._model}")

    @property
    def model(self) -> str:
        return self._model

    def build_prompt(self, prompt: str, context: dict[str, Any]) -> str:
        """Render the instruction, context and expected output shape as one prompt."""
        kind = context.get("kind", "item")
        schema = CANDIDATE_SCHEMAS.get(kind)
        parts = [
            "[SYSTEM]",
            "You are a skeptical investment due-diligence analyst. "
            "Respond with a JSON array only. No additional text or explanation.",
        ]
        if schema:
            parts.append(f"Each array element must be an object shaped like: {json.dumps(schema)}")
        parts += [
            "",
            "[CONTEXT]",
            json.dumps(context, default=str, indent=2),
            "",
            "[USER]",
            prompt.strip(),
            "",
            "[ASSISTANT]",
        ]
        return "\n".join(parts)

    def _run_ollama_sync(self, prompt: str) -> str:
        """
        Run the Ollama CLI with retries.

        Raises:
            ReasoningError: If every attempt fails or the CLI is missing.
        """
        cmd = ["ollama", "run", self._model]
        last_error: ReasoningError | None = None
        attempts = 0

        while attempts <= self._max_retries:
            attempts += 1
            try:
                logger.debug(f"Running Ollama (attempt {attempts}): {' '.join(cmd)}")
                process = subprocess.run(
                    cmd,
                    input=prompt,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                )
            except subprocess.TimeoutExpired:
                logger.warning(f"Ollama timed out after {self._timeout}s (attempt {attempts})")
                last_error = ReasoningError(f"Ollama timed out after {self._timeout} seconds")
                continue
            except FileNotFoundError as e:
                error_msg = "Ollama CLI not found. Please install Ollama: https://ollama.ai"
                logger.error(error_msg)
                raise ReasoningError(error_msg) from e
            except OSError as e:
                logger.warning(f"Ollama error (attempt {attempts}): {e}")
                last_error = ReasoningError(str(e))
                continue

            if process.returncode != 0:
                error_msg = process.stderr.strip() or f"Exit code: {process.returncode}"
                logger.warning(f"Ollama failed (attempt {attempts}): {error_msg}")
                last_error = ReasoningError(
                    f"Ollama exited with code {process.returncode}",
                    return_code=process.returncode,
                    stderr=process.stderr,
                )
                continue

            response = process.stdout.strip()
            logger.debug(f"Ollama response length: {len(response)} chars")
            return response

        raise last_error or ReasoningError("Ollama failed after all retries")

    async def complete(self, prompt: str) -> str:
        """Run one raw completion in a worker thread."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run_ollama_sync, prompt)

    async def generate(self, prompt: str, context: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Generate candidates with the local model.

        An empty or unparseable reply yields an empty list rather than an
        error; a failing CLI raises ``ReasoningError``.
        """
        text = await self.complete(self.build_prompt(prompt, context))
        candidates = parse_candidates(text)
        if not candidates and text:
            logger.warning(f"No {context.get('kind', 'item')} candidates parsed from model output")
        return candidates
