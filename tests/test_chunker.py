"""Tests for corpus sampling and chunk splitting."""

from lifeboat.chunker import (
    DELIMITER,
    MIDDLE_MARKER,
    RECENT_MARKER,
    build_corpus,
    chunk_messages,
    estimate_chunks,
    estimate_minutes,
    format_message,
    sampling_stride,
    split_chunks,
)
from lifeboat.models import Message


def _history(n, width=50):
    return [
        Message(role="user" if i % 2 == 0 else "assistant", text=f"m{i:03d} " + "x" * width, timestamp=float(i + 1))
        for i in range(n)
    ]


def _is_subsequence(sub, seq):
    it = iter(seq)
    return all(any(item == candidate for candidate in it) for item in sub)


class TestFormat:
    def test_role_labels(self):
        assert format_message(Message(role="user", text="hi")) == "[Human]: hi"
        assert format_message(Message(role="assistant", text="hello")) == "[AI]: hello"


class TestSampling:
    def test_exactly_at_budget_is_not_sampled(self):
        messages = _history(20)
        size = len(DELIMITER.join(format_message(m) for m in messages))

        corpus = build_corpus(messages, max_total_chars=size)
        assert corpus.sampled is False
        assert len(corpus) == size
        assert corpus.kept_messages == 20

    def test_one_over_budget_is_sampled(self):
        messages = _history(20)
        size = len(DELIMITER.join(format_message(m) for m in messages))

        corpus = build_corpus(messages, max_total_chars=size - 1)
        assert corpus.sampled is True
        assert MIDDLE_MARKER in corpus.units
        assert RECENT_MARKER in corpus.units

    def test_keeps_first_tenth_and_last_thirty_percent(self):
        messages = _history(100)
        formatted = [format_message(m) for m in messages]

        corpus = build_corpus(messages, max_total_chars=5000)
        units = corpus.units
        assert units[:10] == formatted[:10]
        assert units[10] == MIDDLE_MARKER
        assert units[-30:] == formatted[-30:]
        assert units[-31] == RECENT_MARKER

        middle = units[11:-31]
        assert 0 < len(middle) < 60
        assert _is_subsequence(middle, formatted[10:70])
        assert corpus.kept_messages == 10 + len(middle) + 30
        assert corpus.total_messages == 100

    def test_middle_uses_fixed_stride(self):
        messages = _history(100)
        formatted = [format_message(m) for m in messages]

        corpus = build_corpus(messages, max_total_chars=5000)
        middle = corpus.units[11:-31]
        early_len = len(DELIMITER.join(formatted[:10]))
        recent_len = len(DELIMITER.join(formatted[70:]))
        stride = sampling_stride(60, 5000 - early_len - recent_len)
        assert middle == formatted[10:70][::stride]

    def test_stride(self):
        assert sampling_stride(60, 2500) == 12
        # Budget already spent: keep one middle message
        assert sampling_stride(10, -100) == 10
        assert sampling_stride(0, 1000) == 1
        assert sampling_stride(5, 1_000_000) == 1


class TestSplitting:
    def test_single_chunk_when_small(self):
        units = ["[Human]: hi", "[AI]: hello"]
        assert split_chunks(units, 1000) == ["[Human]: hi\n\n[AI]: hello"]

    def test_empty(self):
        assert split_chunks([], 100) == []

    def test_chunks_reconstruct_input(self):
        units = [format_message(m) for m in _history(40, width=30)]
        chunks = split_chunks(units, 200)

        assert len(chunks) > 1
        assert DELIMITER.join(chunks) == DELIMITER.join(units)
        assert all(len(c) <= 200 for c in chunks)

    def test_units_never_split(self):
        units = ["[AI]: para one\n\npara two", "[Human]: " + "y" * 60, "[AI]: " + "z" * 60]
        chunks = split_chunks(units, 70)
        for unit in units:
            assert any(unit in chunk for chunk in chunks)

    def test_oversize_unit_kept_whole(self):
        units = ["a" * 50, "b" * 200, "c" * 50]
        assert split_chunks(units, 100) == units

    def test_chunk_messages(self):
        corpus, chunks = chunk_messages(_history(10), max_total_chars=100_000, max_chunk_chars=200)
        assert not corpus.sampled
        assert DELIMITER.join(chunks) == corpus.text


class TestEstimates:
    def test_estimate_chunks(self):
        assert estimate_chunks(0) == 1
        assert estimate_chunks(1_000, max_chunk_chars=500) == 2
        assert estimate_chunks(1_001, max_chunk_chars=500) == 3

    def test_estimate_minutes(self):
        assert estimate_minutes(1) == 1
        assert estimate_minutes(4) == 2
