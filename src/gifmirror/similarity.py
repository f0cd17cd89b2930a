"""Metadata-based near-duplicate detection for GIF result sets.

Two GIFs are scored pairwise on cheap numeric signals first (aspect ratio,
duration) and only then on content-word overlap.  A candidate is a duplicate
of the accepted set as soon as it scores ``DUPLICATE_THRESHOLD`` against any
single accepted item.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from gifmirror.models.gifs import DEFAULT_FORMAT, GifItem

DUPLICATE_THRESHOLD = 70

ASPECT_POINTS = 40
DURATION_POINTS = 30
WORDS_POINTS = 30

ASPECT_TOLERANCE = 0.05  # relative difference
DURATION_TOLERANCE = 0.2  # seconds
WORD_OVERLAP_MIN = 0.5

STOPWORDS = frozenset({
    "gif", "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "with", "from",
})


@dataclass(frozen=True)
class GifMetadata:
    aspect_ratio: float  # 0 when unknown
    duration: float | None  # None when the provider reports none (GIPHY, Klipy)
    words: frozenset[str] = field(default_factory=frozenset)


def content_words(text: str) -> frozenset[str]:
    return frozenset(
        w for w in text.lower().split() if len(w) > 2 and w not in STOPWORDS
    )


def extract_metadata(item: GifItem) -> GifMetadata:
    # Prefer the full rendition for geometry; the thumbnail may be letterboxed.
    fmt = item.media_formats.get("full")
    if fmt is None or not (fmt.width and fmt.height):
        fmt = item.media_formats.get(DEFAULT_FORMAT)
    width = fmt.width if fmt else 0
    height = fmt.height if fmt else 0
    aspect_ratio = width / height if width > 0 and height > 0 else 0.0
    duration = round(fmt.duration, 1) if fmt and fmt.duration > 0 else None
    return GifMetadata(
        aspect_ratio=aspect_ratio,
        duration=duration,
        words=content_words(item.content_description or item.title),
    )


def similarity_score(a: GifMetadata, b: GifMetadata) -> int:
    """Score one pair, stopping as soon as the duplicate threshold is reached."""
    score = 0
    if a.aspect_ratio > 0 and b.aspect_ratio > 0:
        diff = abs(a.aspect_ratio - b.aspect_ratio) / max(a.aspect_ratio, b.aspect_ratio)
        if diff < ASPECT_TOLERANCE:
            score += ASPECT_POINTS
    if a.duration is not None and b.duration is not None and abs(a.duration - b.duration) < DURATION_TOLERANCE:
        score += DURATION_POINTS
    if score >= DUPLICATE_THRESHOLD:
        return score

    # Word overlap only tips the balance once the geometry already matches.
    if score >= ASPECT_POINTS and a.words and b.words:
        overlap = len(a.words & b.words) / min(len(a.words), len(b.words))
        if overlap > WORD_OVERLAP_MIN:
            score += WORDS_POINTS
    return score


def is_duplicate(candidate: GifMetadata, accepted: Iterable[GifMetadata]) -> bool:
    return any(similarity_score(candidate, existing) >= DUPLICATE_THRESHOLD for existing in accepted)
