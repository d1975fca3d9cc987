"""Static retrieval strategies keyed by query type.

Each strategy says which content buckets matter for a kind of question,
how strongly to weight them during ranking, what generation parameters
to use, and what answer instructions to hand the model. The table is
built once at import time and exposed read-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from paperchat.data.models import GenerationParams, QueryType

ALL_BUCKETS = (
    "abstract",
    "introduction",
    "related_work",
    "methods",
    "experiments",
    "results",
    "discussion",
    "conclusion",
    "other",
    "figure",
    "table",
    "equation",
    "reference",
    "author",
)


@dataclass(frozen=True)
class RetrievalStrategy:
    name: str
    priority_order: tuple[str, ...]
    weights: Mapping[str, float]
    generation_params: GenerationParams
    instructions: str = ""

    def bucket_weight(self, bucket: str) -> float:
        return self.weights.get(bucket, 0.0)

    def priority_index(self, bucket: str) -> int | None:
        try:
            return self.priority_order.index(bucket)
        except ValueError:
            return None


def _strategy(
    name: str,
    weights: dict[str, float],
    temperature: float,
    max_tokens: int,
    max_units: int,
    instructions: str,
) -> RetrievalStrategy:
    # Priority order follows the declaration order of the weights
    return RetrievalStrategy(
        name=name,
        priority_order=tuple(weights),
        weights=MappingProxyType(dict(weights)),
        generation_params=GenerationParams(
            temperature=temperature,
            max_tokens=max_tokens,
            max_content_units=max_units,
        ),
        instructions=instructions,
    )


STRATEGIES: Mapping[QueryType, RetrievalStrategy] = MappingProxyType({
    QueryType.SUMMARY: _strategy(
        "summary",
        {"abstract": 1.0, "introduction": 0.8, "conclusion": 0.8, "results": 0.5, "methods": 0.4},
        temperature=0.3,
        max_tokens=1500,
        max_units=8,
        instructions=(
            "Give a concise overview of the paper: the problem, the approach, "
            "the main findings and the conclusions. Use short paragraphs or bullet points."
        ),
    ),
    QueryType.METHODOLOGY: _strategy(
        "methodology",
        {"methods": 1.0, "experiments": 0.7, "introduction": 0.4, "equation": 0.4, "figure": 0.3},
        temperature=0.2,
        max_tokens=2000,
        max_units=6,
        instructions=(
            "Explain the methodology step by step. Name datasets, models, procedures "
            "and parameters exactly as the paper states them, and separate what the "
            "authors did from how they evaluated it."
        ),
    ),
    QueryType.RESULTS: _strategy(
        "results",
        {"results": 1.0, "table": 0.8, "figure": 0.7, "experiments": 0.6, "discussion": 0.5, "conclusion": 0.4},
        temperature=0.2,
        max_tokens=2000,
        max_units=8,
        instructions=(
            "Report the results precisely. Quote numbers, metrics and comparisons "
            "exactly as they appear in the provided tables and text, and say which "
            "table or figure each number comes from."
        ),
    ),
    QueryType.TECHNICAL_DETAILS: _strategy(
        "technical_details",
        {"equation": 1.0, "methods": 0.8, "table": 0.5, "experiments": 0.5, "figure": 0.4},
        temperature=0.1,
        max_tokens=2500,
        max_units=8,
        instructions=(
            "Answer with technical precision. Reproduce equations in LaTeX, define "
            "every symbol you use, and do not simplify away details the paper gives."
        ),
    ),
    QueryType.COMPARISON: _strategy(
        "comparison",
        {"results": 1.0, "table": 0.9, "related_work": 0.8, "discussion": 0.6, "introduction": 0.5, "conclusion": 0.4},
        temperature=0.3,
        max_tokens=2000,
        max_units=10,
        instructions=(
            "Structure the answer as a comparison. State the dimensions being compared, "
            "then the differences and similarities for each, citing the supporting "
            "content. A short table is welcome where it helps."
        ),
    ),
    QueryType.SPECIFIC_REFERENCE: _strategy(
        "specific_reference",
        {"figure": 1.0, "table": 1.0, "equation": 1.0, "results": 0.5, "methods": 0.4},
        temperature=0.1,
        max_tokens=1500,
        max_units=5,
        instructions=(
            "Focus on the specific figure, table, equation or section the user referred to. "
            "Describe what it shows and explain its role in the paper. If it is not among "
            "the provided content, say so instead of guessing."
        ),
    ),
    QueryType.CONCEPTUAL: _strategy(
        "conceptual",
        {"introduction": 1.0, "abstract": 0.8, "methods": 0.6, "discussion": 0.5, "conclusion": 0.4},
        temperature=0.4,
        max_tokens=1500,
        max_units=6,
        instructions=(
            "Explain the concept clearly, building intuition before detail. Relate the "
            "explanation to how the paper uses the idea."
        ),
    ),
})

BALANCED_STRATEGY = _strategy(
    "balanced",
    {bucket: 0.5 for bucket in ALL_BUCKETS},
    temperature=0.3,
    max_tokens=1500,
    max_units=6,
    instructions="Answer the question using the provided content from the paper.",
)

NO_CONTENT_INSTRUCTIONS = (
    "No specific supporting content from the paper was found for this question. "
    "Answer from the paper information above where possible, say clearly that the "
    "extracted content does not directly address the question, and do not invent details."
)


def get_strategy(
    primary: QueryType | str | None,
    secondary: QueryType | str | None = None,
    secondary_weight_factor: float = 0.5,
) -> RetrievalStrategy:
    """Look up the strategy for a query type, optionally blended with a secondary type.

    Unknown types fall back to the balanced strategy. A secondary strategy
    contributes its buckets after the primary ones, with its weights scaled
    by ``secondary_weight_factor``; generation parameters and instructions
    always come from the primary.
    """
    base = _lookup(primary)
    if secondary is None:
        return base

    extra = _lookup(secondary)
    if extra is base or extra is BALANCED_STRATEGY:
        return base

    order = list(base.priority_order)
    order.extend(b for b in extra.priority_order if b not in order)

    weights = dict(base.weights)
    for bucket, weight in extra.weights.items():
        weights[bucket] = max(weights.get(bucket, 0.0), weight * secondary_weight_factor)

    return RetrievalStrategy(
        name=f"{base.name}+{extra.name}",
        priority_order=tuple(order),
        weights=MappingProxyType(weights),
        generation_params=base.generation_params,
        instructions=base.instructions,
    )


def _lookup(query_type: QueryType | str | None) -> RetrievalStrategy:
    if query_type is None:
        return BALANCED_STRATEGY
    try:
        return STRATEGIES[QueryType(query_type)]
    except (ValueError, KeyError):
        return BALANCED_STRATEGY
