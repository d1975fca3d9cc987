"""Read access to a paper's extracted content units.

Extraction produces one JSON document per paper holding its metadata
and content units. The stores here only read that content (plus a
``save_paper`` used by the extraction workflow to publish it); units
are immutable once loaded, so concurrent readers share them freely.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from paperchat.config import PROJECT_ROOT, ContentStoreConfig
from paperchat.data.models import ContentUnit, PaperMetadata
from paperchat.retrieval.locators import normalize_locator

logger = logging.getLogger(__name__)


class ContentNotFoundError(KeyError):
    """Raised when no content unit of a paper matches a locator."""


class ContentStore(ABC):
    """Read-only access to extracted content, keyed by paper id."""

    @abstractmethod
    def get_content_units(self, paper_id: str) -> list[ContentUnit]:
        """All units of a paper ordered by position; empty for unknown papers."""

    @abstractmethod
    def get_paper_metadata(self, paper_id: str) -> PaperMetadata:
        """Metadata of a paper; an untitled placeholder for unknown papers."""

    def get_content_unit(self, paper_id: str, locator: str) -> ContentUnit:
        """First unit (in document order) whose locator matches ``locator``."""
        key = normalize_locator(locator)
        for unit in self.get_content_units(paper_id):
            if unit.locator and normalize_locator(unit.locator) == key:
                return unit
        raise ContentNotFoundError(f"No content at '{locator}' in paper {paper_id}")


def _freeze(paper_id: str, units: Iterable[ContentUnit]) -> tuple[ContentUnit, ...]:
    ordered = tuple(sorted(units, key=lambda u: (u.position, u.id)))
    ids = [u.id for u in ordered]
    if len(ids) != len(set(ids)):
        raise ValueError(f"Duplicate content unit ids in paper {paper_id}")
    for unit in ordered:
        if unit.paper_id != paper_id:
            raise ValueError(f"Unit {unit.id} belongs to {unit.paper_id}, not {paper_id}")
    return ordered


class InMemoryContentStore(ContentStore):
    """Content store over units already held in memory."""

    def __init__(
        self,
        units: Iterable[ContentUnit] = (),
        metadata: Iterable[PaperMetadata] = (),
    ) -> None:
        grouped: dict[str, list[ContentUnit]] = {}
        for unit in units:
            grouped.setdefault(unit.paper_id, []).append(unit)

        self._units = {pid: _freeze(pid, group) for pid, group in grouped.items()}
        self._metadata = {m.paper_id: m for m in metadata}

    def get_content_units(self, paper_id: str) -> list[ContentUnit]:
        return list(self._units.get(paper_id, ()))

    def get_paper_metadata(self, paper_id: str) -> PaperMetadata:
        return self._metadata.get(paper_id) or PaperMetadata(paper_id=paper_id, title="Untitled paper")


class JsonContentStore(ContentStore):
    """Content store reading ``<data_dir>/<paper_id>.json`` documents.

    Each paper is parsed once and cached. Loading takes a lock; reads of an
    already cached paper do not.
    """

    def __init__(self, config: ContentStoreConfig | None = None, data_dir: str | Path | None = None) -> None:
        config = config or ContentStoreConfig()
        root = Path(data_dir) if data_dir is not None else Path(config.data_dir)
        self.data_dir = root if root.is_absolute() else PROJECT_ROOT / root
        self._cache: dict[str, tuple[PaperMetadata, tuple[ContentUnit, ...]]] = {}
        self._lock = threading.Lock()

    def _path(self, paper_id: str) -> Path:
        safe_id = paper_id.replace("/", "_")
        return self.data_dir / f"{safe_id}.json"

    def _load(self, paper_id: str) -> tuple[PaperMetadata, tuple[ContentUnit, ...]]:
        cached = self._cache.get(paper_id)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(paper_id)
            if cached is not None:
                return cached

            path = self._path(paper_id)
            if not path.exists():
                logger.warning("No extracted content for paper %s at %s", paper_id, path)
                return PaperMetadata(paper_id=paper_id, title="Untitled paper"), ()

            with open(path) as f:
                data = json.load(f)

            metadata = PaperMetadata.from_dict({"paper_id": paper_id, **data.get("metadata", {})})
            units = _freeze(paper_id, (ContentUnit.from_dict(u) for u in data.get("units", [])))
            self._cache[paper_id] = (metadata, units)

            logger.info("Loaded %d content units for paper %s from %s", len(units), paper_id, path)
            return metadata, units

    def get_content_units(self, paper_id: str) -> list[ContentUnit]:
        return list(self._load(paper_id)[1])

    def get_paper_metadata(self, paper_id: str) -> PaperMetadata:
        return self._load(paper_id)[0]

    def save_paper(self, metadata: PaperMetadata, units: Iterable[ContentUnit]) -> Path:
        """Persist a paper's extracted content as JSON and refresh the cache."""
        frozen = _freeze(metadata.paper_id, units)
        path = self._path(metadata.paper_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "metadata": metadata.to_dict(),
            "units": [u.to_dict() for u in frozen],
        }
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)

        with self._lock:
            self._cache[metadata.paper_id] = (metadata, frozen)

        logger.info("Saved %d content units for paper %s to %s", len(frozen), metadata.paper_id, path)
        return path
