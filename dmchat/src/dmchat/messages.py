"""Message visibility engine.

Governs which messages a (viewer, contact) pair sees, the soft-delete
tombstone and the read-receipt transition. Both flags are monotonic: they
only ever move from False to True.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List

from .errors import Forbidden, ValidationError
from .models import Message
from .sessions import _now_ms
from .storage import Storage

logger = logging.getLogger(__name__)


class MessageEngine:
    def __init__(self, storage: Storage, *, now_func: Callable[[], int] = _now_ms) -> None:
        self._storage = storage
        self._now = now_func

    def list_conversation(self, viewer_id: int, contact_id: int, *, auto_mark_read: bool = True) -> List[Message]:
        """Return the non-deleted messages between ``viewer_id`` and ``contact_id``.

        Ordered by timestamp, ties broken by id. With ``auto_mark_read`` the
        viewer's unread inbound messages are acknowledged while serving the
        fetch and the returned records reflect that.
        """

        messages = self._storage.list_conversation(viewer_id, contact_id)
        if not auto_mark_read:
            return messages
        inbound_unread = [m.id for m in messages if m.sender_id == contact_id and not m.is_read]
        if not inbound_unread:
            return messages
        flipped = set(self._storage.mark_read(inbound_unread, reader_id=viewer_id))
        for message in messages:
            if message.id in flipped:
                message.is_read = True
        # A concurrent fetch may have flipped some first.
        if len(flipped) != len(inbound_unread):
            messages = self._storage.list_conversation(viewer_id, contact_id)
        logger.debug("viewer=%s acknowledged %d messages from %s", viewer_id, len(flipped), contact_id)
        return messages

    def send(self, sender_id: int, receiver_id: int, content: str) -> Message:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is required")
        if self._storage.get_user(receiver_id) is None:
            raise ValidationError("Receiver does not exist")
        return self._storage.create_message(sender_id, receiver_id, content, self._now())

    def mark_read(self, message_ids: Iterable[int], *, reader_id: int | None = None) -> List[int]:
        """Flip ``is_read`` for known unread ids; anything else is ignored."""

        return self._storage.mark_read(message_ids, reader_id=reader_id)

    def soft_delete(self, message_id: int) -> None:
        self._storage.soft_delete(message_id)

    def delete_own(self, caller_id: int, message_id: int) -> None:
        message = self._storage.get_message(message_id)
        if message is None:
            return
        if message.sender_id != caller_id:
            raise Forbidden("Only the sender can delete a message")
        self._storage.soft_delete(message_id)

    def unread_counts(self, viewer_id: int) -> Dict[int, int]:
        counts: Dict[int, int] = {}
        for message in self._storage.list_unread_inbound(viewer_id):
            counts[message.sender_id] = counts.get(message.sender_id, 0) + 1
        return counts
