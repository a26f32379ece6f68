"""Work out which context items a generated answer actually used."""

from __future__ import annotations

import re
from typing import Callable, List, Pattern, Protocol, Sequence, Tuple

from groundrag.metrics.observability import PipelineMetrics, get_logger
from groundrag.models import CitationSet, RetrievedItem

DOCUMENT_MARKER = re.compile(r"\[Document\s*(\d+)\]", re.IGNORECASE)


class CitationStrategy(Protocol):
    """Decide which context positions (0-based) ``answer`` refers to."""

    def cited_positions(self, answer: str, items: Sequence[RetrievedItem]) -> List[int]:
        ...


class IndexMarkerStrategy:
    """Bracketed 1-based ordinals such as ``[Document 3]``."""

    def __init__(self, pattern: Pattern[str] = DOCUMENT_MARKER) -> None:
        self._pattern = pattern

    def cited_positions(self, answer: str, items: Sequence[RetrievedItem]) -> List[int]:
        ordinals = {int(match.group(1)) for match in self._pattern.finditer(answer)}
        return sorted(ordinal - 1 for ordinal in ordinals if 1 <= ordinal <= len(items))


def endpoint_signatures(item: RetrievedItem) -> List[str]:
    payload = item.payload
    method = str(payload.get("method") or "")
    path = str(payload.get("path") or "")
    endpoint = str(payload.get("endpoint") or "") or f"{method} {path}".strip()
    signatures = [endpoint]
    if method and path:
        signatures.extend([f"'{method}' {path}", f"{method} {path}"])
    signatures.append(path)
    summary = str(payload.get("summary") or "")
    if summary:
        signatures.append(summary)
    return [signature for signature in signatures if signature]


class EntitySubstringStrategy:
    """An item is cited when one of its textual forms appears in the answer (case-insensitive)."""

    def __init__(self, signatures: Callable[[RetrievedItem], List[str]] = endpoint_signatures) -> None:
        self._signatures = signatures

    def cited_positions(self, answer: str, items: Sequence[RetrievedItem]) -> List[int]:
        haystack = answer.lower()
        positions = []
        for position, item in enumerate(items):
            if any(signature.lower() in haystack for signature in self._signatures(item)):
                positions.append(position)
        return positions


class CitationExtractor:
    """Resolve citations with a pluggable strategy.

    When nothing is cited the top ``fallback_count`` items by score are
    returned instead and the result is flagged as a fallback; those items are
    a best guess, not evidence that the answer used them.
    """

    def __init__(self, strategy: CitationStrategy, *, fallback_count: int = 3) -> None:
        self._strategy = strategy
        self._fallback_count = fallback_count
        self._logger = get_logger("citations")

    def resolve(self, answer: str, items: Sequence[RetrievedItem]) -> CitationSet:
        positions = self._strategy.cited_positions(answer, items)
        if positions:
            self._logger.info("citations.resolved", cited=len(positions), context_size=len(items))
            return CitationSet(positions=tuple(positions))
        ranked = sorted(range(len(items)), key=lambda position: items[position].score, reverse=True)
        fallback = tuple(ranked[: self._fallback_count])
        PipelineMetrics.citation_fallbacks.inc()
        self._logger.warning("citations.fallback", returned=len(fallback), context_size=len(items))
        return CitationSet(positions=fallback, fallback=True)

    def select(self, answer: str, items: Sequence[RetrievedItem]) -> Tuple[List[RetrievedItem], CitationSet]:
        citations = self.resolve(answer, items)
        return [items[position] for position in citations.positions], citations
