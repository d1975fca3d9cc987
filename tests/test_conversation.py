"""Tests for the bounded conversation window."""

from paperchat.data.models import ChatRole, ChatTurn
from paperchat.retrieval.conversation import last_user_text, recent_turns


def _history(n: int) -> list[ChatTurn]:
    roles = [ChatRole.USER, ChatRole.ASSISTANT]
    return [ChatTurn(roles[i % 2], f"turn {i}") for i in range(n)]


class TestRecentTurns:
    def test_keeps_last_k_in_order(self):
        window = recent_turns(_history(5), 3)
        assert [t.text for t in window] == ["turn 2", "turn 3", "turn 4"]

    def test_default_window_is_three(self):
        assert len(recent_turns(_history(10))) == 3

    def test_shorter_history_returned_whole(self):
        assert [t.text for t in recent_turns(_history(2), 3)] == ["turn 0", "turn 1"]

    def test_zero_window(self):
        assert recent_turns(_history(4), 0) == []

    def test_empty_history(self):
        assert recent_turns([], 3) == []

    def test_does_not_mutate_input(self):
        history = _history(5)
        recent_turns(history, 2)
        assert len(history) == 5


class TestLastUserText:
    def test_finds_most_recent_user_turn(self):
        assert last_user_text(_history(4)) == "turn 2"

    def test_no_user_turns(self):
        assert last_user_text([ChatTurn(ChatRole.ASSISTANT, "hi")]) == ""
