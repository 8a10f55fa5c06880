"""
Client-side view of one inquiry thread.

Holds confirmed server messages plus optimistic local ones (id "temp-..."), merges polled
batches by id, and always renders in (created_at, id) order.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable
from uuid import uuid4

from adslot.utils.time import as_utc, utcnow

TEMP_PREFIX = "temp-"


@dataclass
class ChatMessage:
    id: str
    inquiry_id: str
    sender_id: str
    sender_role: str
    content: str
    created_at: datetime
    attachments: list[dict[str, Any]] = field(default_factory=list)
    is_read: bool = False

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_PREFIX)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ChatMessage":
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        return cls(
            id=str(data["id"]),
            inquiry_id=str(data["inquiry_id"]),
            sender_id=str(data["sender_id"]),
            sender_role=data["sender_role"],
            content=data.get("content") or "",
            created_at=as_utc(created_at),
            attachments=list(data.get("attachments") or []),
            is_read=bool(data.get("is_read")),
        )


class InquiryThread:
    def __init__(self, inquiry_id: str, viewer_id: str):
        self.inquiry_id = inquiry_id
        self.viewer_id = viewer_id
        self._messages: dict[str, ChatMessage] = {}
        self.last_seen: datetime | None = None

    @property
    def messages(self) -> list[ChatMessage]:
        return sorted(self._messages.values(), key=lambda m: (m.created_at, m.id))

    def __len__(self) -> int:
        return len(self._messages)

    def merge(self, incoming: Iterable[ChatMessage]) -> list[str]:
        """
        Add server messages not seen yet. Returns ids of newly merged messages from other senders;
        they are marked read locally and the caller reports them to the server.
        """
        to_mark = []
        for message in incoming:
            if message.is_temporary or message.id in self._messages:
                continue
            if message.sender_id != self.viewer_id and not message.is_read:
                message.is_read = True
                to_mark.append(message.id)
            self._messages[message.id] = message
            if self.last_seen is None or message.created_at > self.last_seen:
                self.last_seen = message.created_at
        return to_mark

    def add_optimistic(self, content: str, sender_role: str, attachments: list[dict] | None = None,
                       now: datetime | None = None) -> ChatMessage:
        """Show a message immediately, before the server has stored it."""
        created_at = as_utc(now or utcnow())
        latest = self.messages[-1].created_at if self._messages else None
        if latest is not None and created_at < latest:
            created_at = latest
        message = ChatMessage(
            id=f"{TEMP_PREFIX}{uuid4().hex}",
            inquiry_id=self.inquiry_id,
            sender_id=self.viewer_id,
            sender_role=sender_role,
            content=content,
            created_at=created_at,
            attachments=list(attachments or []),
            is_read=True,
        )
        self._messages[message.id] = message
        return message

    def confirm(self, temp_id: str, confirmed: ChatMessage) -> None:
        """Replace the optimistic entry with the server's row (which may already have arrived by polling)."""
        self._messages.pop(temp_id, None)
        self.merge([confirmed])

    def discard(self, temp_id: str) -> None:
        self._messages.pop(temp_id, None)
