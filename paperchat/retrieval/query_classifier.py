"""Rule-based query classification.

Maps a question to one or two query types using weighted lexical cues,
extracts explicit figure/table/equation/section/page references, and
attaches the generation parameters of the matching retrieval strategy.
Classification is deterministic and never raises: a question that no
rule recognizes is treated as conceptual.
"""

import logging
import re

from paperchat.config import ClassifierConfig
from paperchat.data.models import GenerationParams, PaperMetadata, QueryProfile, QueryType, Question
from paperchat.retrieval.locators import extract_locators
from paperchat.retrieval.strategies import get_strategy

logger = logging.getLogger(__name__)


def _cues(*pairs: tuple[str, float]) -> list[tuple[re.Pattern, float]]:
    return [(re.compile(pattern, re.IGNORECASE), weight) for pattern, weight in pairs]


RULES: dict[QueryType, list[tuple[re.Pattern, float]]] = {
    QueryType.SUMMARY: _cues(
        (r"\bsummar(y|ize|ise|izing|ising)\b", 1.5),
        (r"\boverview\b", 1.0),
        (r"\bmain (idea|point|contribution|takeaway)s?\b", 1.0),
        (r"\bkey (point|finding|contribution|takeaway)s?\b", 0.8),
        (r"\b(tl;?dr|in brief|in a nutshell)\b", 1.0),
        (r"\bwhat is (this|the) paper about\b", 1.5),
        (r"\babstract\b", 0.5),
    ),
    QueryType.METHODOLOGY: _cues(
        (r"\bmethod(s|ology|ological)?\b", 1.0),
        (r"\bapproach(es)?\b", 1.0),
        (r"\bprocedure\b", 0.8),
        (r"\btechniques?\b", 0.6),
        (r"\b(experimental )?setup\b", 0.8),
        (r"\b(trained|training|train)\b", 0.5),
        (r"\bdata ?sets?\b", 0.5),
        (r"\bhow (did|do|does|was|were|is|are)\b", 0.5),
        (r"\bhow\b", 0.3),
    ),
    QueryType.RESULTS: _cues(
        (r"\bresults?\b", 1.0),
        (r"\bfindings?\b", 1.0),
        (r"\bperform(ance|ed|s)?\b", 0.8),
        (r"\baccura(cy|te)\b", 0.8),
        (r"\b(outcomes?|achieve[sd]?|improve(ment|d|s)?)\b", 0.6),
        (r"\b(evaluation|metrics?|scores?|benchmarks?)\b", 0.6),
        (r"\bstatistically significant\b", 0.8),
    ),
    QueryType.TECHNICAL_DETAILS: _cues(
        (r"\b(equations?|formula[es]?|derivations?|derive[sd]?)\b", 1.0),
        (r"\b(proofs?|theorems?|lemmas?)\b", 1.0),
        (r"\b(hyper)?parameters?\b", 0.8),
        (r"\barchitecture\b", 0.6),
        (r"\bimplementation( details?)?\b", 0.8),
        (r"\b(complexity|loss function|objective function|gradient)\b", 0.8),
        (r"\b(math|mathematical|notation|symbol)\b", 0.8),
    ),
    QueryType.COMPARISON: _cues(
        (r"\bcompar(e|ed|es|ing|ison|isons)\b", 1.5),
        (r"\b(versus|vs\.?)\b", 1.5),
        (r"\bdiffer(s|ent|ence|ences)?\b", 1.0),
        (r"\b(better|worse|faster|slower) than\b", 1.0),
        (r"\b(contrast|relative to|outperform(s|ed)?)\b", 1.0),
        (r"\bbaselines?\b", 0.6),
        (r"\bsimilar(ity|ities)? to\b", 0.6),
    ),
    QueryType.CONCEPTUAL: _cues(
        (r"\bwhat (is|are|does) (a|an|the)?\b", 0.5),
        (r"\bexplain\b", 1.0),
        (r"\bwhy\b", 0.8),
        (r"\b(meaning|concept|intuition|idea behind)\b", 1.0),
        (r"\bdefin(e|ition|ed)\b", 1.0),
        (r"\bunderstand\b", 0.6),
    ),
}

# Reference strength per explicit locator; one reference already outweighs most single cues
REFERENCE_WEIGHT = 2.0

AUTHOR_CUES = re.compile(
    r"\b(authors?|who (wrote|writes|proposed|published)|written by|affiliations?|institutions?)\b",
    re.IGNORECASE,
)

MATH_EXCERPT = re.compile(r"(\\[a-zA-Z]+|\$[^$]+\$|[=∑∫∂≤≥±])")


class QueryClassifier:
    """Classifies questions into primary and secondary query types."""

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        self.config = config or ClassifierConfig()
        self._tie_rank = self._build_tie_rank(self.config.tie_break_order)

    def classify(
        self,
        question: Question,
        paper_metadata: PaperMetadata | None = None,
    ) -> QueryProfile:
        """Classify a question into a QueryProfile.

        Args:
            question: The user's question with optional highlighted excerpt.
            paper_metadata: Used only to notice when the question names an author.

        Returns:
            QueryProfile with primary/secondary types, extracted references
            and the generation parameters of the primary type's strategy.
        """
        text = question.raw_text or ""
        references = tuple(extract_locators(text))
        strengths = self.score(text, question.selected_excerpt)
        if references:
            strengths[QueryType.SPECIFIC_REFERENCE] = REFERENCE_WEIGHT * len(references)

        ranked = sorted(
            (t for t, s in strengths.items() if s > 0),
            key=lambda t: (-strengths[t], self._tie_rank.get(t, len(self._tie_rank))),
        )

        primary = ranked[0] if ranked else QueryType.CONCEPTUAL
        secondary = ranked[1] if len(ranked) > 1 else None

        profile = QueryProfile(
            primary_type=primary,
            secondary_type=secondary,
            specific_references=references,
            generation_params=self._generation_params(primary),
            include_author_context=self._wants_authors(text, paper_metadata),
        )

        logger.debug(
            "Classified question as %s (secondary=%s, refs=%s): %s",
            primary.value,
            secondary.value if secondary else None,
            list(references),
            text[:80],
        )
        return profile

    @staticmethod
    def score(text: str, excerpt: str | None = None) -> dict[QueryType, float]:
        """Sum matching cue weights per query type."""
        strengths: dict[QueryType, float] = {}
        for query_type, cues in RULES.items():
            strengths[query_type] = sum(weight for pattern, weight in cues if pattern.search(text))

        # Highlighted math nudges toward technical detail without overriding the question
        if excerpt and MATH_EXCERPT.search(excerpt):
            strengths[QueryType.TECHNICAL_DETAILS] += 0.5

        return strengths

    @staticmethod
    def _wants_authors(text: str, paper_metadata: PaperMetadata | None) -> bool:
        if AUTHOR_CUES.search(text):
            return True
        if paper_metadata is None:
            return False
        lowered = text.lower()
        for author in paper_metadata.authors:
            surname = author.split()[-1].lower() if author.split() else ""
            if len(surname) > 2 and re.search(rf"\b{re.escape(surname)}\b", lowered):
                return True
        return False

    @staticmethod
    def _generation_params(primary: QueryType) -> GenerationParams:
        return get_strategy(primary).generation_params

    @staticmethod
    def _build_tie_rank(order: list[str]) -> dict[QueryType, int]:
        rank: dict[QueryType, int] = {}
        for name in order:
            try:
                query_type = QueryType(name)
            except ValueError:
                logger.warning("Ignoring unknown query type in tie_break_order: %s", name)
                continue
            rank.setdefault(query_type, len(rank))
        return rank
