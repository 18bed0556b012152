"""Conversation-history rendering shared by the three stages."""

from council.models import HistoryEntry, Message


def history_messages(history: list[HistoryEntry]) -> list[Message]:
    """Each prior turn becomes a user/assistant message pair."""
    messages: list[Message] = []
    for entry in history:
        messages.append(Message(role="user", content=entry.prompt))
        messages.append(Message(role="assistant", content=entry.response))
    return messages


def history_text(history: list[HistoryEntry], response_chars: int | None = None) -> str:
    """Plain-text Q/A transcript, optionally truncating each answer."""
    parts = []
    for entry in history:
        response = entry.response
        if response_chars is not None and len(response) > response_chars:
            response = response[:response_chars] + "..."
        parts.append(f"Q: {entry.prompt}\nA: {response}")
    return "\n\n".join(parts)
