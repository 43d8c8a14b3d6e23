"""Domain types shared by the catalog store, ranker, extractor, and resolver.

All values are immutable once constructed; candidates and results are scoped
to a single resolution call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class CatalogEntry:
    """One service offering with its precomputed embedding."""
    id: str
    title: str
    embedding: tuple[float, ...]
    description: str = ""
    category: str = ""
    price: float | None = None

    @property
    def dim(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class Candidate:
    """Ranked catalog entry for one query."""
    id: str
    title: str
    score: float
    position: int = -1  # catalog insertion index


class ResolutionStatus(str, Enum):
    """How a resolution call ended."""
    OK = "ok"
    NO_MATCH = "no_match"
    DEGRADED = "degraded"
    EMBEDDING_FAILED = "embedding_failed"


NO_MATCH_SUMMARY = "No matching services found."


@dataclass(frozen=True)
class ResolutionItem:
    """Catalog service selected for the user, with an estimated quantity."""
    id: str
    title: str
    description: str = ""
    estimated_quantity: float = 0.0
    price: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "estimatedQuantity": self.estimated_quantity,
            "price": self.price,
        }


@dataclass(frozen=True)
class ResolutionResult:
    """Final structured answer of one resolution call.

    ``raw_output`` and ``candidates`` are kept for diagnostics and are not
    part of the public payload returned by ``to_dict``.
    """
    items: tuple[ResolutionItem, ...] = ()
    summary: str = ""
    notes: str = ""
    status: ResolutionStatus = ResolutionStatus.OK
    candidates: tuple[Candidate, ...] = field(default=(), repr=False)
    raw_output: str = field(default="", repr=False)
    retriable: bool = False

    @classmethod
    def empty(
        cls,
        status: ResolutionStatus = ResolutionStatus.DEGRADED,
        *,
        summary: str = "",
        raw_output: str = "",
        candidates: tuple[Candidate, ...] = (),
        retriable: bool = False,
    ) -> ResolutionResult:
        """Structurally valid result with no items."""
        return cls(
            items=(),
            summary=summary,
            notes="",
            status=status,
            candidates=tuple(candidates),
            raw_output=raw_output,
            retriable=retriable,
        )

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "summary": self.summary,
            "notes": self.notes,
            "status": self.status.value,
            "retriable": self.retriable,
        }


@dataclass(frozen=True)
class ConversationReply:
    """Assistant reply for the chat flow plus the services it recommends."""
    reply: str
    result: ResolutionResult


@dataclass(frozen=True)
class Recommendation:
    """Short advice for the user, written around the top-ranked services."""
    text: str
    candidates: tuple[Candidate, ...] = ()
    status: ResolutionStatus = ResolutionStatus.OK
    retriable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation": self.text,
            "services": [
                {"id": c.id, "title": c.title, "score": c.score} for c in self.candidates
            ],
            "status": self.status.value,
            "retriable": self.retriable,
        }
