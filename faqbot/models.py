"""Data models for the FAQ chatbot."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class Role(str, Enum):
    """Conversation roles understood by every chat provider."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A canonical conversation message with flat, non-empty text content."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        """Return the OpenAI-style ``{"role", "content"}`` mapping."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class VectorRecord:
    """An embedded FAQ entry as kept in the vector store."""

    id: str
    vector: np.ndarray
    metadata: dict[str, str]
    provider: str | None = None

    @property
    def question(self) -> str:
        return self.metadata.get("question", "")

    @property
    def answer(self) -> str:
        return self.metadata.get("answer", "")


@dataclass(frozen=True)
class SearchResult:
    """One scored hit returned by the similarity search."""

    similarity: float
    metadata: dict[str, Any]
    record_id: str | None = None


@dataclass(frozen=True)
class EmbeddingResult:
    """An embedding together with the provider that produced it."""

    vector: np.ndarray = field(repr=False)
    provider: str

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])
