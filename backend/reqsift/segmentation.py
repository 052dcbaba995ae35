from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence, TypeVar


SINGLE_PASS_MAX_CHARS = 5000
_BLANK_LINE_RUN = re.compile(r"\n{3,}")

T = TypeVar("T")


@dataclass(frozen=True)
class ChunkTier:
    max_chars: int | None
    chunk_size: int
    overlap: int
    max_chunks: int


@dataclass(frozen=True)
class Chunk:
    index: int
    start: int
    end: int
    text: str


@dataclass(frozen=True)
class SegmentPlan:
    text: str
    chunks: list[Chunk]
    total_chunks: int
    tier: ChunkTier | None
    sampled: bool

    @property
    def mode(self) -> str:
        return "single_pass" if self.tier is None else "chunked"

    def describe(self) -> dict[str, object]:
        return {
            "mode": self.mode,
            "normalized_chars": len(self.text),
            "chunks_total": self.total_chunks,
            "chunks_selected": len(self.chunks),
            "chunk_indexes": [chunk.index for chunk in self.chunks],
            "chunk_size": self.tier.chunk_size if self.tier else None,
            "chunk_overlap": self.tier.overlap if self.tier else None,
            "max_chunks": self.tier.max_chunks if self.tier else None,
            "sampled": self.sampled,
        }


def build_tiers(small_max: int, medium_max: int, large_max: int) -> tuple[ChunkTier, ...]:
    return (
        ChunkTier(max_chars=small_max, chunk_size=4000, overlap=400, max_chunks=2),
        ChunkTier(max_chars=medium_max, chunk_size=6000, overlap=600, max_chunks=3),
        ChunkTier(max_chars=large_max, chunk_size=8000, overlap=800, max_chunks=4),
        ChunkTier(max_chars=None, chunk_size=10_000, overlap=1000, max_chunks=6),
    )


DEFAULT_TIERS = build_tiers(10_000, 30_000, 100_000)


def normalize_text(text: str) -> str:
    unified = text.replace("\r\n", "\n").replace("\r", "\n")
    return _BLANK_LINE_RUN.sub("\n\n", unified)


def select_tier(length: int, tiers: Sequence[ChunkTier] = DEFAULT_TIERS) -> ChunkTier:
    for tier in tiers:
        if tier.max_chars is None or length < tier.max_chars:
            return tier
    return tiers[-1]


def _window_bounds(length: int, chunk_size: int, overlap_size: int) -> list[tuple[int, int]]:
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if overlap_size < 0 or overlap_size >= chunk_size:
        raise ValueError("overlap_size must be >= 0 and smaller than chunk_size")

    if length <= chunk_size:
        return [(0, length)]

    step = chunk_size - overlap_size
    bounds: list[tuple[int, int]] = []
    start = 0
    while start + chunk_size < length:
        bounds.append((start, start + chunk_size))
        start += step

    tail_length = length - start
    if tail_length > 2 * overlap_size:
        bounds.append((start, length))
    else:
        # A short tail is folded into the previous window instead of becoming its own sliver.
        last_start, _ = bounds[-1]
        bounds[-1] = (last_start, length)
    return bounds


def split_chunks(
    text: str,
    chunk_size: int | None = None,
    overlap_size: int | None = None,
    *,
    tiers: Sequence[ChunkTier] = DEFAULT_TIERS,
    single_pass_max_chars: int = SINGLE_PASS_MAX_CHARS,
) -> list[Chunk]:
    normalized = normalize_text(text)
    if chunk_size is None:
        if len(normalized) <= single_pass_max_chars:
            return [Chunk(index=0, start=0, end=len(normalized), text=normalized)]
        tier = select_tier(len(normalized), tiers)
        chunk_size = tier.chunk_size
        if overlap_size is None:
            overlap_size = tier.overlap
    if overlap_size is None:
        overlap_size = 0

    return [
        Chunk(index=index, start=start, end=end, text=normalized[start:end])
        for index, (start, end) in enumerate(_window_bounds(len(normalized), chunk_size, overlap_size))
    ]


def chunk_text(
    text: str,
    chunk_size: int | None = None,
    overlap_size: int | None = None,
    *,
    tiers: Sequence[ChunkTier] = DEFAULT_TIERS,
    single_pass_max_chars: int = SINGLE_PASS_MAX_CHARS,
) -> list[str]:
    """Split ``text`` into ordered, overlapping windows.

    Line endings are normalized and blank-line runs collapsed before measuring.
    Without explicit sizes the tier for the normalized length applies, and text
    no longer than ``single_pass_max_chars`` is returned as a single chunk.
    Consecutive chunks share exactly ``overlap_size`` characters. Every chunk
    is at most ``chunk_size`` long except the last: a tail of up to twice the
    overlap is folded into the final window, so it can reach
    ``chunk_size + overlap_size`` characters.
    """
    chunks = split_chunks(
        text,
        chunk_size,
        overlap_size,
        tiers=tiers,
        single_pass_max_chars=single_pass_max_chars,
    )
    return [chunk.text for chunk in chunks]


def sample_chunks(chunks: Sequence[T], max_chunks: int) -> list[T]:
    """Pick at most ``max_chunks`` items, keeping the first and last.

    Interior picks sit at ``floor(1 + i * (n - 2) / (max_chunks - 2))``, so the
    sample is deterministic and spread across the whole document.
    """
    total = len(chunks)
    if total <= max_chunks:
        return list(chunks)
    if max_chunks < 2:
        return list(chunks[: max(0, max_chunks)])

    interior_slots = max_chunks - 2
    indexes = [0]
    for i in range(interior_slots):
        indexes.append(int(1 + i * (total - 2) / interior_slots))
    indexes.append(total - 1)
    return [chunks[index] for index in sorted(set(indexes))]


def plan_segments(
    text: str,
    *,
    tiers: Sequence[ChunkTier] = DEFAULT_TIERS,
    single_pass_max_chars: int = SINGLE_PASS_MAX_CHARS,
) -> SegmentPlan:
    normalized = normalize_text(text)
    if len(normalized) <= single_pass_max_chars:
        whole = Chunk(index=0, start=0, end=len(normalized), text=normalized)
        return SegmentPlan(text=normalized, chunks=[whole], total_chunks=1, tier=None, sampled=False)

    tier = select_tier(len(normalized), tiers)
    chunks = split_chunks(normalized, tier.chunk_size, tier.overlap, tiers=tiers)
    selected = sample_chunks(chunks, tier.max_chunks)
    return SegmentPlan(
        text=normalized,
        chunks=selected,
        total_chunks=len(chunks),
        tier=tier,
        sampled=len(selected) < len(chunks),
    )
