"""Unit tests for OAuth state tokens."""

import threading

import pytest

from gwcli.auth.state import (
    StateToken,
    new_csrf_token,
    new_state,
    tokens_equal,
)


class TestNewState:
    """Tests for state generation."""

    def test_entropy_and_encoding(self):
        """32 random bytes encode to 43 URL-safe characters."""
        state = new_state()
        assert len(state) == 43
        assert all(c.isalnum() or c in "-_" for c in state)

    def test_no_collisions(self):
        states = {new_state() for _ in range(500)}
        assert len(states) == 500

    def test_csrf_token_is_hex(self):
        token = new_csrf_token()
        assert len(token) == 64
        int(token, 16)


class TestStateToken:
    """Tests for single-use state validation."""

    def test_consumed_once(self):
        state = StateToken("abc")
        assert state.consume("abc") is True
        assert state.consume("abc") is False
        assert state.consumed

    def test_exact_match_only(self):
        """No case folding, trimming or prefix matching."""
        state = StateToken("AbC")
        assert not state.consume("abc")
        assert not state.consume("AbC ")
        assert not state.consume("Ab")
        assert not state.consume(None)
        assert state.consume("AbC")

    def test_mismatch_does_not_consume(self):
        state = StateToken("abc")
        assert not state.consume("xyz")
        assert state.active

    def test_invalidate(self):
        state = StateToken("abc")
        state.invalidate()
        assert not state.matches("abc")
        assert not state.consume("abc")

    def test_empty_value_rejected(self):
        with pytest.raises(ValueError):
            StateToken("")

    def test_concurrent_consume_single_winner(self):
        """Only one of many concurrent consumers succeeds."""
        state = StateToken.generate()
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(state.consume(state.value))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_repr_hides_value(self):
        state = StateToken("a" * 43)
        assert "a" * 43 not in repr(state)


class TestTokensEqual:
    def test_equal(self):
        assert tokens_equal("abc", "abc")

    def test_not_equal(self):
        assert not tokens_equal("abc", "abd")

    def test_missing(self):
        assert not tokens_equal("abc", None)
        assert not tokens_equal("", "")
