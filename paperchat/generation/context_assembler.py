"""Prompt assembly from ranked paper content.

Renders paper metadata, ranked content units, the recent conversation,
the question and query-type instructions into one prompt string. Each
content kind has its own renderer so figures, tables and equations keep
their structure in the prompt.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from paperchat.data.models import (
    ChatRole,
    ChatTurn,
    ContentKind,
    ContentUnit,
    PaperMetadata,
    QueryProfile,
    Question,
    RankedUnit,
)
from paperchat.retrieval.strategies import NO_CONTENT_INSTRUCTIONS, get_strategy

logger = logging.getLogger(__name__)

BUCKET_TITLES = {
    "abstract": "Abstract",
    "introduction": "Introduction",
    "related_work": "Related Work",
    "methods": "Methods",
    "experiments": "Experiments",
    "results": "Results",
    "discussion": "Discussion",
    "conclusion": "Conclusion",
    "other": "Other Sections",
    "figure": "Figures",
    "table": "Tables",
    "equation": "Equations",
    "reference": "References",
    "author": "Authors",
}

BASE_INSTRUCTIONS = (
    "Answer using the paper content above. Refer to figures, tables, equations and "
    "sections by their labels when you use them. If the content is insufficient, say "
    "what is missing rather than guessing."
)


def _label(unit: ContentUnit, default: str) -> str:
    return unit.locator or unit.attributes.get("title") or default


def render_text(unit: ContentUnit) -> str:
    title = unit.attributes.get("title") or unit.locator
    header = f"[{title}] " if title else ""
    return f"{header}{unit.text}"


def render_figure(unit: ContentUnit) -> str:
    lines = [f"[{_label(unit, 'Figure')}]"]
    caption = unit.attributes.get("caption") or unit.text
    lines.append(f"Caption: {caption}")
    ocr_text = unit.attributes.get("ocr_text")
    if ocr_text:
        lines.append(f"Text in figure: {ocr_text}")
    return "\n".join(lines)


def render_table(unit: ContentUnit) -> str:
    lines = [f"[{_label(unit, 'Table')}]"]
    caption = unit.attributes.get("caption")
    if caption:
        lines.append(f"Caption: {caption}")

    headers = unit.attributes.get("headers")
    rows = unit.attributes.get("rows")
    if headers and rows is not None:
        lines.append("| " + " | ".join(str(h) for h in headers) + " |")
        lines.append("|" + "---|" * len(headers))
        for row in rows:
            lines.append("| " + " | ".join(str(cell) for cell in row) + " |")
    else:
        lines.append(unit.text)
    return "\n".join(lines)


def render_equation(unit: ContentUnit) -> str:
    latex = unit.attributes.get("latex") or unit.text
    lines = [f"[{_label(unit, 'Equation')}]", f"$$ {latex} $$"]
    description = unit.attributes.get("description")
    if description:
        lines.append(description)
    return "\n".join(lines)


def render_reference(unit: ContentUnit) -> str:
    key = unit.attributes.get("key") or unit.locator
    return f"[{key}] {unit.text}" if key else unit.text


def render_author(unit: ContentUnit) -> str:
    affiliation = unit.attributes.get("affiliation")
    return f"{unit.text} ({affiliation})" if affiliation else unit.text


RENDERERS: dict[ContentKind, Callable[[ContentUnit], str]] = {
    ContentKind.SECTION: render_text,
    ContentKind.PARAGRAPH: render_text,
    ContentKind.FIGURE: render_figure,
    ContentKind.TABLE: render_table,
    ContentKind.EQUATION: render_equation,
    ContentKind.REFERENCE: render_reference,
    ContentKind.AUTHOR: render_author,
}

_missing = set(ContentKind) - set(RENDERERS)
if _missing:
    raise RuntimeError(f"No renderer for content kinds: {sorted(k.value for k in _missing)}")


def render_unit(unit: ContentUnit) -> str:
    return RENDERERS[unit.kind](unit)


class ContextAssembler:
    """Builds the final prompt for the language model."""

    def assemble(
        self,
        profile: QueryProfile,
        ranked_units: Sequence[RankedUnit],
        history: Sequence[ChatTurn],
        paper_metadata: PaperMetadata,
        question: Question | None = None,
    ) -> str:
        """Render a complete prompt.

        The output is deterministic for a given input and always contains the
        paper header and instructions, even when no content was ranked.

        Args:
            profile: Classifier output, selecting instructions and author context.
            ranked_units: Ranked content, in ranking order.
            history: Conversation turns already bounded to the window, oldest first.
            paper_metadata: Title, authors and other header fields.
            question: The question being answered, rendered before the instructions.

        Returns:
            Prompt text.
        """
        strategy = get_strategy(profile.primary_type, profile.secondary_type)
        sections = [self._render_header(profile, paper_metadata)]

        if ranked_units:
            sections.append(self._render_content(ranked_units, strategy.priority_order))
        else:
            logger.info("No ranked content for paper %s; emitting degraded prompt", paper_metadata.paper_id)

        if history:
            sections.append(self._render_history(history))

        if question is not None:
            sections.append(self._render_question(question))

        sections.append(self._render_instructions(profile, strategy.instructions, bool(ranked_units)))

        prompt = "\n\n".join(sections)
        logger.debug("Assembled prompt: %d units, %d chars", len(ranked_units), len(prompt))
        return prompt

    @staticmethod
    def _render_header(profile: QueryProfile, metadata: PaperMetadata) -> str:
        lines = ["## Paper", f"Title: {metadata.title}"]
        if profile.include_author_context and metadata.authors:
            lines.append(f"Authors: {metadata.author_line}")
        if metadata.venue or metadata.year:
            venue = ", ".join(str(v) for v in (metadata.venue, metadata.year) if v)
            lines.append(f"Published: {venue}")
        return "\n".join(lines)

    @staticmethod
    def _render_content(ranked_units: Sequence[RankedUnit], priority_order: Sequence[str]) -> str:
        referenced = [r for r in ranked_units if r.is_reference_match]
        others = [r for r in ranked_units if not r.is_reference_match]

        groups: dict[str, list[RankedUnit]] = {}
        for item in others:
            groups.setdefault(item.unit.bucket, []).append(item)

        ordered_buckets = [b for b in priority_order if b in groups]
        ordered_buckets += [b for b in groups if b not in ordered_buckets]

        parts = ["## Relevant Content"]
        if referenced:
            parts.append("### Referenced in the Question")
            parts.extend(render_unit(r.unit) for r in referenced)
        for bucket in ordered_buckets:
            title = BUCKET_TITLES.get(bucket, bucket.replace("_", " ").title())
            parts.append(f"### {title}")
            parts.extend(render_unit(r.unit) for r in groups[bucket])
        return "\n\n".join(parts)

    @staticmethod
    def _render_history(history: Sequence[ChatTurn]) -> str:
        lines = ["## Conversation So Far"]
        for turn in history:
            speaker = "User" if turn.role == ChatRole.USER else "Assistant"
            lines.append(f"{speaker}: {turn.text}")
        return "\n".join(lines)

    @staticmethod
    def _render_question(question: Question) -> str:
        lines = ["## Question", question.raw_text]
        if question.selected_excerpt:
            lines.append("")
            lines.append("Highlighted text:")
            lines.append(f'"{question.selected_excerpt}"')
        return "\n".join(lines)

    @staticmethod
    def _render_instructions(profile: QueryProfile, type_instructions: str, has_content: bool) -> str:
        lines = ["## Instructions"]
        if has_content:
            lines.append(BASE_INSTRUCTIONS)
            if type_instructions:
                lines.append(type_instructions)
        else:
            lines.append(NO_CONTENT_INSTRUCTIONS)
        if profile.specific_references:
            lines.append("The user referred to: " + ", ".join(profile.specific_references) + ".")
        return "\n".join(lines)
