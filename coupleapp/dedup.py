"""
Read-time deduplication of chat messages.

Clients retry sends, so the chat_messages table can hold several rows with
the same (sender, receiver, content, timestamp). Every read path collapses
such a group to the row with the smallest id; storage is only changed by
the explicit purge_duplicates() cleanup.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import and_, delete, func, or_, select

from coupleapp.models import ChatMessage
from coupleapp.storage import RecordStore

logger = logging.getLogger(__name__)

# Columns that identify a dedup group
DEDUP_KEY = (
    ChatMessage.sender,
    ChatMessage.receiver,
    ChatMessage.content,
    ChatMessage.timestamp,
)


@dataclass
class DuplicateGroup:
    sender: str
    receiver: str
    content: str
    timestamp: str
    count: int
    keep_id: int


def canonical_ids(*criteria):
    """SELECT of the smallest id in every dedup group matching `criteria`."""
    query = select(func.min(ChatMessage.id))
    if criteria:
        query = query.where(*criteria)
    return query.group_by(*DEDUP_KEY)


class MessageDeduplicator:
    """
    Deduplicated views over the message store.

    Ties on timestamp are broken by id ascending so every listing is
    deterministic.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def list_all(self) -> list[ChatMessage]:
        """All messages, one per dedup group, newest first."""
        with self.store.session() as db:
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.id.in_(canonical_ids()))
                .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.asc())
                .all()
            )
        logger.info(f"Listed {len(messages)} messages (deduplicated)")
        return messages

    def list_between(self, party_a: str, party_b: str) -> list[ChatMessage]:
        """The conversation between two parties in either direction, oldest first."""
        conversation = or_(
            and_(ChatMessage.sender == party_a, ChatMessage.receiver == party_b),
            and_(ChatMessage.sender == party_b, ChatMessage.receiver == party_a),
        )
        with self.store.session() as db:
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.id.in_(canonical_ids(conversation)))
                .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
                .all()
            )
        logger.info(f"Listed {len(messages)} messages between {party_a} and {party_b} (deduplicated)")
        return messages

    def list_for_user(self, username: str) -> list[ChatMessage]:
        """Messages sent by or to `username`, plus broadcasts, newest first."""
        visible = or_(
            ChatMessage.sender == username,
            ChatMessage.receiver == username,
            ChatMessage.receiver == "all",
        )
        with self.store.session() as db:
            messages = (
                db.query(ChatMessage)
                .filter(ChatMessage.id.in_(canonical_ids(visible)))
                .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.asc())
                .all()
            )
        logger.info(f"Listed {len(messages)} messages visible to {username} (deduplicated)")
        return messages

    def find_duplicate_groups(self) -> list[DuplicateGroup]:
        """Dedup groups holding more than one row, newest first. Read only."""
        with self.store.session() as db:
            rows = (
                db.query(
                    *DEDUP_KEY,
                    func.count(ChatMessage.id).label("copies"),
                    func.min(ChatMessage.id).label("keep_id"),
                )
                .group_by(*DEDUP_KEY)
                .having(func.count(ChatMessage.id) > 1)
                .order_by(ChatMessage.timestamp.desc(), func.min(ChatMessage.id).asc())
                .all()
            )
        return [
            DuplicateGroup(
                sender=row.sender,
                receiver=row.receiver,
                content=row.content,
                timestamp=row.timestamp,
                count=row.copies,
                keep_id=row.keep_id,
            )
            for row in rows
        ]

    def purge_duplicates(self) -> int:
        """
        Delete every message that is not the smallest id of its dedup group.

        Runs as one transaction, so a failure leaves the table untouched.
        Idempotent: a second call removes nothing.

        Returns:
            Number of rows removed
        """
        statement = (
            delete(ChatMessage)
            .where(ChatMessage.id.not_in(canonical_ids()))
            .execution_options(synchronize_session=False)
        )
        with self.store.transaction() as db:
            result = db.execute(statement)
            removed = result.rowcount
        logger.info(f"Purged {removed} duplicate messages")
        return removed
