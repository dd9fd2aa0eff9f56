"""
Participant reconciliation and deleted-flag repair for conversations.

``participants`` is written when a conversation is created, while messages and
unread counters are written later by other code paths. Anyone who shows up in
those later signals must also be a participant, otherwise the conversation
disappears from their inbox queries (``participants array_contains uid``).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from marketplace_ops.booking_models import CONVERSATIONS, MESSAGES
from marketplace_ops.core.logging import logger
from marketplace_ops.store import Document, RecordStore


def compute_participants(
    participants: Iterable[str],
    unread_count: Mapping[str, Any] | None,
    sender_ids: Iterable[str | None],
) -> list[str]:
    """
    Existing participants in their stored order, then unread-counter users,
    then message senders. Additions only.
    """
    corrected: list[str] = []
    seen: set[str] = set()

    def add(uid):
        if uid and uid not in seen:
            seen.add(uid)
            corrected.append(uid)

    # stored entries are kept as-is, even empty ones
    for uid in participants:
        if uid not in seen:
            seen.add(uid)
            corrected.append(uid)
    for uid in (unread_count or {}):
        add(uid)
    for uid in sender_ids:
        add(uid)
    return corrected


def needs_fix(original: list[str], corrected: list[str]) -> bool:
    return len(corrected) != len(original) or any(p not in corrected for p in original)


def _message_time(message: Document) -> datetime | None:
    value = message.get("timestamp")
    return value if isinstance(value, datetime) else None


def latest_sender(messages: Iterable[Document]) -> str | None:
    latest = None
    latest_time = None
    for message in messages:
        ts = _message_time(message)
        if ts is None:
            continue
        if latest_time is None or ts > latest_time:
            latest, latest_time = message, ts
    return latest.get("senderId") if latest else None


def stale_deleted_flags(conversation: Mapping[str, Any], messages: Iterable[Document]) -> list[str]:
    """
    Users whose conversation is still hidden even though it has seen activity
    since: they have unread messages, or they sent the latest message.
    """
    deleted = conversation.get("deleted") or {}
    unread = conversation.get("unreadCount") or {}
    last_sender = latest_sender(messages)

    stale = []
    for uid, flagged in deleted.items():
        if flagged is not True:
            continue
        try:
            has_unread = int(unread.get(uid) or 0) > 0
        except (TypeError, ValueError):
            has_unread = False
        if has_unread or uid == last_sender:
            stale.append(uid)
    return stale


def deleted_flag_update(user_ids: Iterable[str]) -> dict[str, bool]:
    return {f"deleted.{uid}": False for uid in user_ids}


@dataclass
class ReconcileResult:
    conversation_id: str
    before: list[str]
    after: list[str]
    changed: bool
    written: bool = False

    @property
    def added(self) -> list[str]:
        return [uid for uid in self.after if uid not in self.before]


@dataclass
class FlagRepairResult:
    conversation_id: str
    cleared: list[str] = field(default_factory=list)
    written: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.cleared)


class ConversationReconciler:
    def __init__(self, store: RecordStore):
        self.store = store

    def messages(self, conversation_id: str) -> list[Document]:
        return self.store.list_subcollection(CONVERSATIONS, conversation_id, MESSAGES)

    def reconcile(self, conversation: Document, dry_run: bool = False) -> ReconcileResult:
        before = list(conversation.get("participants") or [])
        messages = self.messages(conversation.id)
        after = compute_participants(
            before,
            conversation.get("unreadCount"),
            (m.get("senderId") for m in messages),
        )
        result = ReconcileResult(conversation.id, before, after, needs_fix(before, after))

        if not result.changed:
            logger.debug(
                {
                    "event_type": "conversation_reconcile",
                    "event_name": "participants_ok",
                    "conversation_id": conversation.id,
                }
            )
            return result

        logger.info(
            {
                "event_type": "conversation_reconcile",
                "event_name": "participants_drift",
                "conversation_id": conversation.id,
                "before": before,
                "after": after,
                "message_count": len(messages),
                "dry_run": dry_run,
            }
        )
        if not dry_run:
            self.store.update(CONVERSATIONS, conversation.id, {"participants": after})
            result.written = True
        return result

    def reconcile_by_id(self, conversation_id: str, dry_run: bool = False) -> ReconcileResult:
        return self.reconcile(self.store.get(CONVERSATIONS, conversation_id), dry_run=dry_run)

    def all_conversations(self) -> list[Document]:
        return self.store.query(CONVERSATIONS)

    def clear_deleted_flag(self, conversation_id: str, user_id: str) -> FlagRepairResult:
        """Unhide one conversation for one user with a single-field update."""
        conversation = self.store.get(CONVERSATIONS, conversation_id)
        result = FlagRepairResult(conversation_id)

        if (conversation.get("deleted") or {}).get(user_id) is not True:
            return result

        self.store.update(CONVERSATIONS, conversation_id, deleted_flag_update([user_id]))
        result.cleared = [user_id]
        result.written = True
        logger.info(
            {
                "event_type": "conversation_repair",
                "event_name": "deleted_flag_cleared",
                "conversation_id": conversation_id,
                "user_id": user_id,
            }
        )
        return result

    def repair_deleted_flags(
        self,
        conversation: Document,
        clear_all: bool = False,
        dry_run: bool = False,
    ) -> FlagRepairResult:
        deleted = conversation.get("deleted") or {}
        result = FlagRepairResult(conversation.id)
        if not any(v is True for v in deleted.values()):
            return result

        if clear_all:
            result.cleared = [uid for uid, flagged in deleted.items() if flagged is True]
        else:
            result.cleared = stale_deleted_flags(conversation.data, self.messages(conversation.id))

        if result.cleared and not dry_run:
            self.store.update(CONVERSATIONS, conversation.id, deleted_flag_update(result.cleared))
            result.written = True

        if result.cleared:
            logger.info(
                {
                    "event_type": "conversation_repair",
                    "event_name": "deleted_flags_cleared",
                    "conversation_id": conversation.id,
                    "user_ids": result.cleared,
                    "dry_run": dry_run,
                }
            )
        return result
