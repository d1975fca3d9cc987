"""Data models for extracted paper content, questions, and chat responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ContentKind(str, Enum):
    SECTION = "section"
    PARAGRAPH = "paragraph"
    FIGURE = "figure"
    TABLE = "table"
    EQUATION = "equation"
    REFERENCE = "reference"
    AUTHOR = "author"


# Kinds whose bucket is the structural tag rather than the kind itself
TEXT_KINDS = frozenset({ContentKind.SECTION, ContentKind.PARAGRAPH})


@dataclass(frozen=True)
class ContentUnit:
    """One retrievable piece of a paper's extracted content.

    ``text`` is the canonical textual form (paragraph body, figure caption,
    table text, LaTeX source). ``attributes`` holds optional structured extras
    produced by extraction, such as ``title``, ``caption``, ``ocr_text``,
    ``latex``, ``headers`` and ``rows``.
    """

    id: str
    paper_id: str
    kind: ContentKind
    text: str
    structural_tag: str = "other"
    position: int = 0
    locator: str = ""
    attributes: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def bucket(self) -> str:
        if self.kind in TEXT_KINDS:
            return (self.structural_tag or "other").lower()
        return self.kind.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "paper_id": self.paper_id,
            "kind": self.kind.value,
            "text": self.text,
            "structural_tag": self.structural_tag,
            "position": self.position,
            "locator": self.locator,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ContentUnit:
        return cls(
            id=data["id"],
            paper_id=data["paper_id"],
            kind=ContentKind(data["kind"]),
            text=data.get("text", ""),
            structural_tag=data.get("structural_tag") or "other",
            position=int(data.get("position", 0)),
            locator=data.get("locator") or "",
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass
class PaperMetadata:
    """Bibliographic header information for a paper."""

    paper_id: str
    title: str
    authors: list[str] = field(default_factory=list)
    year: int | None = None
    venue: str | None = None
    abstract: str | None = None

    @property
    def author_line(self) -> str:
        author_str = ", ".join(self.authors[:5])
        if len(self.authors) > 5:
            author_str += " et al."
        return author_str

    def to_dict(self) -> dict:
        return {
            "paper_id": self.paper_id,
            "title": self.title,
            "authors": self.authors,
            "year": self.year,
            "venue": self.venue,
            "abstract": self.abstract,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PaperMetadata:
        return cls(
            paper_id=data["paper_id"],
            title=data.get("title") or "Untitled paper",
            authors=list(data.get("authors") or []),
            year=data.get("year"),
            venue=data.get("venue"),
            abstract=data.get("abstract"),
        )


@dataclass(frozen=True)
class Question:
    """A single user question, optionally anchored to highlighted text."""

    raw_text: str
    selected_excerpt: str | None = None
    selection_locator: str | None = None


class QueryType(str, Enum):
    SUMMARY = "summary"
    METHODOLOGY = "methodology"
    RESULTS = "results"
    TECHNICAL_DETAILS = "technical_details"
    COMPARISON = "comparison"
    SPECIFIC_REFERENCE = "specific_reference"
    CONCEPTUAL = "conceptual"


@dataclass(frozen=True)
class GenerationParams:
    temperature: float
    max_tokens: int
    max_content_units: int


@dataclass(frozen=True)
class QueryProfile:
    """Classifier output for one question."""

    primary_type: QueryType
    generation_params: GenerationParams
    secondary_type: QueryType | None = None
    specific_references: tuple[str, ...] = ()
    include_author_context: bool = False


@dataclass
class RankedUnit:
    """A content unit with the score and score components that ranked it."""

    unit: ContentUnit
    score: float
    reasons: dict[str, float] = field(default_factory=dict)

    @property
    def is_reference_match(self) -> bool:
        return self.reasons.get("reference", 0.0) > 0


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatTurn:
    role: ChatRole
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ContextMetadata:
    sections_used: int = 0
    figures_used: int = 0
    tables_used: int = 0
    equations_used: int = 0

    @classmethod
    def from_ranked(cls, ranked: list[RankedUnit]) -> ContextMetadata:
        meta = cls()
        for item in ranked:
            kind = item.unit.kind
            if kind in TEXT_KINDS:
                meta.sections_used += 1
            elif kind == ContentKind.FIGURE:
                meta.figures_used += 1
            elif kind == ContentKind.TABLE:
                meta.tables_used += 1
            elif kind == ContentKind.EQUATION:
                meta.equations_used += 1
        return meta

    def to_dict(self) -> dict:
        return {
            "sectionsUsed": self.sections_used,
            "figuresUsed": self.figures_used,
            "tablesUsed": self.tables_used,
            "equationsUsed": self.equations_used,
        }


@dataclass
class ChatResponse:
    """Response returned to chat clients for one question."""

    session_id: str
    response: str
    context_metadata: ContextMetadata = field(default_factory=ContextMetadata)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool = True
    error: str | None = None
    latency_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "response": self.response,
            "contextMetadata": self.context_metadata.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "error": self.error,
        }
