"""Provider-independent response shapes.

Every chat provider answer is coerced into one of two results: a
``StreamingResult`` wrapping a ``TextStream`` (lazy, finite, consumable once)
or a ``CompleteResult`` holding the final text.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field

FRAGMENT_PATTERN = re.compile(r"\S+\s*|\s+")


def synthesize_fragments(text: str) -> list[str]:
    """Split a complete answer into word-sized fragments.

    Each fragment keeps its trailing whitespace, so ``"".join`` of the result
    reproduces ``text`` exactly.

    Returns:
        Ordered list of fragments; empty when ``text`` is empty.
    """
    return FRAGMENT_PATTERN.findall(text)


async def _iterate(fragments: Iterable[str]) -> AsyncIterator[str]:
    for fragment in fragments:
        yield fragment


class TextStream:
    """A lazy, finite sequence of text fragments that can be consumed once.

    Wraps either a provider's native async iterator or fragments synthesized
    from a complete string. Iterating a second time raises ``RuntimeError``.
    """

    def __init__(
        self,
        source: AsyncIterator[str],
        *,
        first: str | None = None,
    ) -> None:
        self._source = source
        self._pending = first
        self._started = False
        self._finished = False

    @classmethod
    def from_text(cls, text: str) -> TextStream:
        """Build a stream that replays a complete answer fragment by fragment.

        Returns:
            TextStream over ``synthesize_fragments(text)``.
        """
        return cls(_iterate(synthesize_fragments(text)))

    @property
    def consumed(self) -> bool:
        return self._started

    def __aiter__(self) -> TextStream:
        if self._started:
            msg = "TextStream can only be iterated once"
            raise RuntimeError(msg)
        self._started = True
        return self

    async def __anext__(self) -> str:
        self._started = True
        if self._finished:
            raise StopAsyncIteration
        if self._pending is not None:
            fragment, self._pending = self._pending, None
            return fragment
        while True:
            try:
                fragment = await self._source.__anext__()
            except StopAsyncIteration:
                self._finished = True
                raise
            if fragment:
                return fragment

    async def collect(self) -> str:
        """Drain the stream.

        Returns:
            All remaining fragments joined into one string.
        """
        parts: list[str] = []
        while True:
            try:
                parts.append(await self.__anext__())
            except StopAsyncIteration:
                return "".join(parts)

    async def aclose(self) -> None:
        """Release the underlying provider stream without draining it."""
        self._finished = True
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            await closer()


@dataclass
class StreamingResult:
    """A provider answer delivered as a fragment stream."""

    stream: TextStream = field(repr=False)
    provider: str
    model: str

    @property
    def is_streaming(self) -> bool:
        return True


@dataclass
class CompleteResult:
    """A provider answer delivered as one final string."""

    text: str
    provider: str
    model: str

    @property
    def is_streaming(self) -> bool:
        return False


ProviderResult = StreamingResult | CompleteResult
