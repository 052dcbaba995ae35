from __future__ import annotations

import pytest

from reqsift.segmentation import (
    chunk_text,
    normalize_text,
    plan_segments,
    sample_chunks,
    select_tier,
    split_chunks,
)


def _letters(length: int) -> str:
    return "".join(chr(ord("a") + index % 26) for index in range(length))


def _reassemble(chunks: list[str], overlap: int) -> str:
    return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])


def test_normalize_text_unifies_line_endings_and_blank_runs() -> None:
    assert normalize_text("a\r\nb\rc\n\n\n\nd") == "a\nb\nc\n\nd"
    assert normalize_text("keep\n\nthis") == "keep\n\nthis"


@pytest.mark.parametrize(
    ("length", "chunk_size", "overlap", "max_chunks"),
    [
        (0, 4000, 400, 2),
        (9_999, 4000, 400, 2),
        (10_000, 6000, 600, 3),
        (29_999, 6000, 600, 3),
        (30_000, 8000, 800, 4),
        (99_999, 8000, 800, 4),
        (100_000, 10_000, 1000, 6),
        (2_000_000, 10_000, 1000, 6),
    ],
)
def test_select_tier_breakpoints(length: int, chunk_size: int, overlap: int, max_chunks: int) -> None:
    tier = select_tier(length)
    assert (tier.chunk_size, tier.overlap, tier.max_chunks) == (chunk_size, overlap, max_chunks)


def test_short_text_is_single_chunk_equal_to_normalized_input() -> None:
    text = "Line one.\r\nLine two.\n\n\n\nLine three." * 100
    chunks = chunk_text(text)
    assert chunks == [normalize_text(text)]


def test_text_at_single_pass_limit_is_not_split() -> None:
    assert len(chunk_text(_letters(5000))) == 1
    assert len(chunk_text(_letters(5001))) == 2


def test_explicit_windows_share_exact_overlap() -> None:
    assert chunk_text(_letters(10), 4, 1) == ["abcd", "defg", "ghij"]


def test_short_tail_is_folded_into_last_window() -> None:
    chunks = chunk_text(_letters(9), 5, 2)
    assert chunks == ["abcde", "defghi"]
    assert len(chunks[-1]) <= 5 + 2


@pytest.mark.parametrize("length", [5001, 7600, 12_000, 29_999, 64_321, 150_000])
def test_chunks_cover_text_and_respect_size(length: int) -> None:
    text = _letters(length)
    tier = select_tier(length)
    chunks = chunk_text(text, tier.chunk_size, tier.overlap)

    assert _reassemble(chunks, tier.overlap) == text
    assert all(len(chunk) <= tier.chunk_size for chunk in chunks[:-1])
    assert len(chunks[-1]) <= tier.chunk_size + tier.overlap


def test_split_chunks_carries_offsets() -> None:
    text = _letters(12_000)
    chunks = split_chunks(text, 6000, 600)
    assert [(chunk.start, chunk.end) for chunk in chunks] == [(0, 6000), (5400, 12_000)]
    assert all(text[chunk.start : chunk.end] == chunk.text for chunk in chunks)
    assert [chunk.index for chunk in chunks] == [0, 1]


def test_invalid_window_sizes_raise() -> None:
    with pytest.raises(ValueError):
        chunk_text(_letters(100), 0, 0)
    with pytest.raises(ValueError):
        chunk_text(_letters(100), 10, 10)


def test_sample_chunks_is_noop_when_small_enough() -> None:
    items = ["a", "b", "c"]
    assert sample_chunks(items, 3) == items
    assert sample_chunks(items, 6) == items


def test_sample_chunks_keeps_first_last_and_spreads_interior() -> None:
    items = list(range(10))
    assert sample_chunks(items, 4) == [0, 1, 5, 9]
    sampled = sample_chunks(items, 3)
    assert sampled[0] == 0
    assert sampled[-1] == 9
    assert len(sampled) <= 3
    assert sampled == sorted(sampled)


def test_plan_segments_single_pass_for_short_text() -> None:
    plan = plan_segments("Short requirements document.")
    assert plan.mode == "single_pass"
    assert len(plan.chunks) == 1
    assert plan.describe()["chunks_total"] == 1


def test_plan_segments_samples_large_documents() -> None:
    plan = plan_segments(_letters(150_000))
    assert plan.mode == "chunked"
    assert plan.total_chunks == 17
    assert plan.sampled is True
    assert len(plan.chunks) == 6
    assert plan.chunks[0].index == 0
    assert plan.chunks[-1].index == 16
