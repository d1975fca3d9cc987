"""Bounded conversation window for prompt context."""

from typing import Sequence

from paperchat.data.models import ChatRole, ChatTurn


def recent_turns(history: Sequence[ChatTurn], window_size: int = 3) -> list[ChatTurn]:
    """Return the last ``window_size`` turns of a conversation, oldest first."""
    if window_size <= 0 or not history:
        return []
    return list(history[-window_size:])


def last_user_text(history: Sequence[ChatTurn]) -> str:
    """Text of the most recent user turn, or an empty string."""
    for turn in reversed(history):
        if turn.role == ChatRole.USER:
            return turn.text
    return ""
