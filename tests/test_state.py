"""
Tests for OAuth state nonces (CSRF protection).
"""

import pytest

from connectors.errors import InvalidState
from connectors.state import OAuthStateRegistry


class TestOAuthStateRegistry:
    def test_issue_then_consume(self):
        states = OAuthStateRegistry()
        state = states.issue("user-1")
        assert states.consume(state) == "user-1"

    def test_state_is_not_the_user_id(self):
        state = OAuthStateRegistry().issue("user-1")
        assert "user-1" not in state
        assert len(state) >= 32

    def test_states_are_unique(self):
        states = OAuthStateRegistry()
        assert len({states.issue("user-1") for _ in range(50)}) == 50

    def test_single_use(self):
        states = OAuthStateRegistry()
        state = states.issue("user-1")
        states.consume(state, "user-1")
        with pytest.raises(InvalidState):
            states.consume(state, "user-1")

    def test_unknown_state(self):
        with pytest.raises(InvalidState):
            OAuthStateRegistry().consume("forged-state")

    def test_empty_state(self):
        with pytest.raises(InvalidState):
            OAuthStateRegistry().consume("")

    def test_bound_to_issuing_user(self):
        states = OAuthStateRegistry()
        state = states.issue("user-1")
        with pytest.raises(InvalidState):
            states.consume(state, "user-2")
        # A failed attempt burns the nonce too.
        with pytest.raises(InvalidState):
            states.consume(state, "user-1")

    def test_expired_state(self):
        states = OAuthStateRegistry(ttl_seconds=-1)
        state = states.issue("user-1")
        with pytest.raises(InvalidState):
            states.consume(state)
