"""Per-session chat log.

Entries are kept in arrival order for the lifetime of one call and discarded
on teardown; nothing is persisted.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass(frozen=True)
class ChatEntry:
    """One chat message as seen by this client."""

    sender: str
    text: str
    timestamp: str  # ISO-8601, as sent by the author
    is_self: bool = False


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class ChatLog:
    """Append-only, ordered chat history."""

    def __init__(self) -> None:
        self._entries: list[ChatEntry] = []

    def append(self, entry: ChatEntry) -> None:
        self._entries.append(entry)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> list[ChatEntry]:
        return list(self._entries)

    def texts(self) -> list[str]:
        return [e.text for e in self._entries]

    def __iter__(self) -> Iterator[ChatEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
