"""Answer generation using the Anthropic Claude API.

Sends an assembled prompt to the model with per-query generation
parameters. Failures are surfaced as GenerationError and never retried
here; retry policy belongs to the caller.
"""

import logging
import time

import anthropic

from paperchat.config import GenerationConfig
from paperchat.data.models import GenerationParams

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a research assistant helping a reader understand one specific paper.

Rules:
1. Base your answer on the paper content provided in the prompt.
2. Refer to figures, tables, equations and sections by their labels.
3. Reproduce numbers and equations exactly; do not round or paraphrase them.
4. If the provided content does not answer the question, say so explicitly.
5. Follow the answer format requested in the instructions section."""


class GenerationError(RuntimeError):
    """Raised when the model call fails or times out."""


class Generator:
    """Generates answers for assembled prompts using Claude."""

    def __init__(self, config: GenerationConfig, api_key: str, client: anthropic.Anthropic | None = None) -> None:
        self.config = config
        self.client = client or anthropic.Anthropic(
            api_key=api_key,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    def generate(self, prompt: str, params: GenerationParams | None = None) -> str:
        """Generate a response for a finished prompt.

        Args:
            prompt: Prompt text from the context assembler.
            params: Temperature and token budget for this query type;
                configuration defaults when omitted.

        Returns:
            Raw response text.

        Raises:
            GenerationError: On any API error, including timeouts.
        """
        temperature = params.temperature if params else self.config.temperature
        max_tokens = params.max_tokens if params else self.config.max_tokens

        start = time.perf_counter()
        try:
            response = self.client.messages.create(
                model=self.config.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error("Model call failed after %.1fms: %s", (time.perf_counter() - start) * 1000, e)
            raise GenerationError(f"Model call failed: {e}") from e

        answer = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        elapsed = (time.perf_counter() - start) * 1000

        logger.info(
            "Generated answer (%.1fms, %d input + %d output tokens): %s...",
            elapsed,
            response.usage.input_tokens,
            response.usage.output_tokens,
            answer[:100],
        )
        return answer
