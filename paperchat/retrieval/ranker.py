"""Query-aware relevance ranking of extracted paper content.

Scores every content unit of a paper against a classified question,
guarantees that explicitly referenced figures, tables, equations and
sections come first, removes near-duplicate text, and truncates the
result to the query type's content budget.
"""

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from paperchat.config import RankingConfig
from paperchat.data.models import ChatTurn, ContentUnit, QueryProfile, Question, RankedUnit
from paperchat.retrieval.conversation import last_user_text
from paperchat.retrieval.locators import locators_adjacent, normalize_locator
from paperchat.retrieval.strategies import RetrievalStrategy, get_strategy

logger = logging.getLogger(__name__)

STOPWORDS = frozenset(
    """
    a about above after again all also am an and any are as at be because been
    before being below between both but by can could did do does doing down during
    each few for from further had has have having he her here hers him his how i if
    in into is it its itself just me more most my no nor not now of off on once only
    or other our ours out over own paper same she should so some such than that the
    their theirs them then there these they this those through to too under until up
    us use used using very was we were what when where which while who whom why will
    with would you your authors author tell show shows explain describe
    """.split()
)


def tokenize(text: str) -> set[str]:
    """Significant lowercase terms of a text.

    Hyphenated terms (e.g. 'self-attention') contribute both the full
    term and its parts; stopwords and single characters are dropped.
    """
    tokens = re.findall(r"\b[a-z0-9]+(?:[-'][a-z0-9]+)*\b", (text or "").lower())
    terms: set[str] = set()
    for token in tokens:
        terms.add(token)
        if "-" in token:
            terms.update(token.split("-"))
    return {t for t in terms if len(t) > 1 and t not in STOPWORDS}


def normalize_text(text: str) -> str:
    """Collapse case, punctuation and whitespace for near-duplicate detection."""
    return " ".join(re.findall(r"[a-z0-9]+", (text or "").lower()))


class RelevanceRanker:
    """Ranks a paper's content units for a single question.

    Score of a unit:
        bucket weight (from the retrieval strategy)
        + keyword overlap with the question and excerpt, in [0, 1]
        + selection boost when the unit is what the user highlighted
        + structural priority bonus decaying with the bucket's priority index

    Units resolved from explicit references in the question receive
    ``reference_boost`` on top, bypass the relevance floor, and are
    emitted first in the order the question mentions them.
    """

    def __init__(self, config: RankingConfig | None = None) -> None:
        self.config = config or RankingConfig()

    def rank(
        self,
        profile: QueryProfile,
        question: Question,
        units: Sequence[ContentUnit],
        history: Sequence[ChatTurn] = (),
    ) -> list[RankedUnit]:
        """Rank content units for a question.

        Args:
            profile: Classifier output for the question.
            question: The question and optional highlighted excerpt.
            units: All content units of the paper.
            history: Recent conversation turns; used as the lexical query when
                the question itself has no significant terms (follow-ups).

        Returns:
            Ranked units, at most ``max_content_units`` long.
        """
        budget = max(profile.generation_params.max_content_units, 0)
        if not units or budget == 0:
            return []

        start = time.perf_counter()
        strategy = get_strategy(
            profile.primary_type,
            profile.secondary_type,
            self.config.secondary_weight_factor,
        )
        query_terms = self._query_terms(question, history)

        referenced = self._resolve_references(profile.specific_references, units)
        referenced_ids = {unit.id for unit in referenced}
        remaining = [unit for unit in units if unit.id not in referenced_ids]

        pinned = [
            self._score(unit, strategy, query_terms, question, reference=True)
            for unit in referenced
        ]
        scored = self._score_all(remaining, strategy, query_terms, question)

        candidates = [r for r in scored if r.score >= self.config.relevance_floor]
        candidates.sort(key=lambda r: (-r.score, r.unit.position, r.unit.id))

        results = self._deduplicate(pinned + candidates)[:budget]

        elapsed = (time.perf_counter() - start) * 1000
        logger.info(
            "Ranked %d/%d units for %s (%d referenced, %.1fms)",
            len(results),
            len(units),
            strategy.name,
            len(pinned),
            elapsed,
        )
        return results

    def _query_terms(self, question: Question, history: Sequence[ChatTurn]) -> set[str]:
        terms = tokenize(question.raw_text) | tokenize(question.selected_excerpt or "")
        if not terms and history:
            terms = tokenize(last_user_text(history))
        return terms

    def _resolve_references(
        self,
        references: Sequence[str],
        units: Sequence[ContentUnit],
    ) -> list[ContentUnit]:
        """Units whose locator matches an explicit reference, in reference order."""
        by_locator: dict[str, list[ContentUnit]] = {}
        for unit in units:
            if unit.locator:
                by_locator.setdefault(normalize_locator(unit.locator), []).append(unit)

        resolved: list[ContentUnit] = []
        seen: set[str] = set()
        for reference in references:
            matches = by_locator.get(normalize_locator(reference))
            if not matches:
                logger.warning("Reference '%s' not found among extracted content", reference)
                continue
            for unit in sorted(matches, key=lambda u: (u.position, u.id)):
                if unit.id not in seen:
                    seen.add(unit.id)
                    resolved.append(unit)
        return resolved

    def _score_all(
        self,
        units: Sequence[ContentUnit],
        strategy: RetrievalStrategy,
        query_terms: set[str],
        question: Question,
    ) -> list[RankedUnit]:
        workers = self.config.max_workers
        if workers <= 1 or len(units) < 2:
            return [self._score(u, strategy, query_terms, question) for u in units]

        # map() keeps input order, and the caller sorts deterministically afterwards
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(
                lambda u: self._score(u, strategy, query_terms, question),
                units,
            ))

    def _score(
        self,
        unit: ContentUnit,
        strategy: RetrievalStrategy,
        query_terms: set[str],
        question: Question,
        reference: bool = False,
    ) -> RankedUnit:
        bucket = unit.bucket
        reasons = {
            "bucket_weight": strategy.bucket_weight(bucket),
            "keyword_overlap": self.keyword_overlap(unit.text, query_terms),
            "selection": self.config.selection_boost if self._is_selected(unit, question) else 0.0,
            "structural_priority": self._priority_bonus(strategy, bucket),
        }
        if reference:
            reasons["reference"] = self.config.reference_boost

        return RankedUnit(unit=unit, score=sum(reasons.values()), reasons=reasons)

    @staticmethod
    def keyword_overlap(text: str, query_terms: set[str]) -> float:
        """Fraction of query terms that also occur in the text."""
        if not query_terms:
            return 0.0
        return len(query_terms & tokenize(text)) / len(query_terms)

    def _priority_bonus(self, strategy: RetrievalStrategy, bucket: str) -> float:
        index = strategy.priority_index(bucket)
        if index is None:
            return 0.0
        return self.config.priority_bonus * self.config.priority_decay ** index

    @staticmethod
    def _is_selected(unit: ContentUnit, question: Question) -> bool:
        if question.selection_locator:
            if not unit.locator:
                return False
            if normalize_locator(unit.locator) == normalize_locator(question.selection_locator):
                return True
            return locators_adjacent(unit.locator, question.selection_locator)

        excerpt = normalize_text(question.selected_excerpt or "")
        return bool(excerpt) and excerpt in normalize_text(unit.text)

    @staticmethod
    def _deduplicate(ranked: list[RankedUnit]) -> list[RankedUnit]:
        """Drop units whose normalized text repeats an earlier, better-placed unit."""
        seen: set[str] = set()
        unique: list[RankedUnit] = []
        for item in ranked:
            key = normalize_text(item.unit.text)
            if key and key in seen:
                logger.debug("Dropping duplicate content unit %s", item.unit.id)
                continue
            seen.add(key)
            unique.append(item)
        return unique
