"""Question-answering pipeline over one paper's extracted content.

question -> classify -> rank (content store) -> assemble prompt -> model -> ChatResponse

Each call is independent and keeps no state between questions, so one
pipeline instance can serve concurrent questions about different papers.
"""

import logging
import time
import uuid
from typing import Sequence

from paperchat.config import Settings, load_config, setup_logging
from paperchat.data.content_store import ContentStore, JsonContentStore
from paperchat.data.models import (
    ChatResponse,
    ChatTurn,
    ContextMetadata,
    QueryProfile,
    Question,
    RankedUnit,
)
from paperchat.generation.context_assembler import ContextAssembler
from paperchat.generation.generator import GenerationError, Generator
from paperchat.monitoring import LatencyTracker, metrics
from paperchat.retrieval.conversation import recent_turns
from paperchat.retrieval.query_classifier import QueryClassifier
from paperchat.retrieval.ranker import RelevanceRanker

logger = logging.getLogger(__name__)


class PaperChatPipeline:
    """Answers questions about a paper from its extracted content."""

    def __init__(
        self,
        config: Settings | None = None,
        store: ContentStore | None = None,
        generator: Generator | None = None,
    ) -> None:
        self.config = config or load_config()

        self.store = store or JsonContentStore(self.config.content_store)
        self.classifier = QueryClassifier(self.config.classifier)
        self.ranker = RelevanceRanker(self.config.ranking)
        self.assembler = ContextAssembler()
        self._generator = generator

    @property
    def generator(self) -> Generator:
        """Lazy-load the generator to avoid API client init for prompt-only use."""
        if self._generator is None:
            self._generator = Generator(self.config.generation, self.config.anthropic_api_key)
        return self._generator

    def build_prompt(
        self,
        paper_id: str,
        question: Question,
        history: Sequence[ChatTurn] = (),
    ) -> tuple[QueryProfile, list[RankedUnit], str]:
        """Classify, rank and assemble without calling the model.

        Args:
            paper_id: Paper whose content answers the question.
            question: The user's question and optional highlighted excerpt.
            history: Full conversation history, oldest first; only the
                configured window is used.

        Returns:
            Tuple of (query profile, ranked units, prompt text).
        """
        window = recent_turns(history, self.config.conversation.window_size)
        metadata = self.store.get_paper_metadata(paper_id)

        with LatencyTracker(metrics, "classification"):
            profile = self.classifier.classify(question, metadata)
        metrics.increment("queries.by_type", labels={"type": profile.primary_type.value})

        with LatencyTracker(metrics, "ranking"):
            units = self.store.get_content_units(paper_id)
            ranked = self.ranker.rank(profile, question, units, window)

        with LatencyTracker(metrics, "assembly"):
            prompt = self.assembler.assemble(profile, ranked, window, metadata, question=question)

        return profile, ranked, prompt

    def answer(
        self,
        paper_id: str,
        question: Question,
        history: Sequence[ChatTurn] = (),
        session_id: str | None = None,
    ) -> ChatResponse:
        """Answer a question about a paper.

        Model failures are returned as an unsuccessful response carrying the
        error message; they are not retried here.

        Returns:
            ChatResponse following the chat response contract.
        """
        session_id = session_id or uuid.uuid4().hex
        start = time.perf_counter()
        metrics.increment("queries.total")

        profile, ranked, prompt = self.build_prompt(paper_id, question, history)
        context_metadata = ContextMetadata.from_ranked(ranked)

        try:
            with LatencyTracker(metrics, "generation"):
                answer = self.generator.generate(prompt, profile.generation_params)
        except GenerationError as e:
            metrics.increment("generation.errors")
            logger.error("Answer failed for paper %s (session %s): %s", paper_id, session_id, e)
            return ChatResponse(
                session_id=session_id,
                response="",
                context_metadata=context_metadata,
                success=False,
                error=str(e),
                latency_ms=(time.perf_counter() - start) * 1000,
            )

        response = ChatResponse(
            session_id=session_id,
            response=answer,
            context_metadata=context_metadata,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
        metrics.observe("query.latency_ms", response.latency_ms)

        logger.info(
            "Answered %s question on paper %s in %.1fms using %d units: %s",
            profile.primary_type.value,
            paper_id,
            response.latency_ms,
            len(ranked),
            question.raw_text[:80],
        )
        return response


def create_pipeline(config_path: str | None = None) -> PaperChatPipeline:
    """Factory function to create a configured pipeline with file-backed content.

    Args:
        config_path: Path to YAML config file.

    Returns:
        Configured PaperChatPipeline instance.
    """
    config = load_config(config_path)
    setup_logging(config.logging)
    return PaperChatPipeline(config)
