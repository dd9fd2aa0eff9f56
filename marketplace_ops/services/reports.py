"""
Read-only views operators use before and after a repair.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from marketplace_ops.booking_models import (
    BOOKINGS,
    CONVERSATIONS,
    USERS,
    BookingStatus,
    BookingView,
    ConversationView,
)
from marketplace_ops.services.booking_state import RESET_CLEARED_FIELDS, allowed_transitions
from marketplace_ops.store import RecordStore, where

ACTIVE_STATUSES = [
    BookingStatus.PENDING.value,
    BookingStatus.ACCEPTED.value,
    BookingStatus.TRAVELING.value,
    BookingStatus.ARRIVED.value,
    BookingStatus.IN_PROGRESS.value,
]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(booking: BookingView) -> datetime:
    ts = booking.created_at
    if ts is None:
        return _EPOCH
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass
class BookingReport:
    recent: list[BookingView]
    active: list[BookingView]


def booking_report(store: RecordStore, limit: int = 10) -> BookingReport:
    """Most recent bookings plus every booking still in a non-terminal status."""
    everything = [BookingView.from_document(d.id, d.data) for d in store.query(BOOKINGS)]
    recent = sorted(everything, key=_sort_key, reverse=True)[:limit]

    active_docs = store.query(BOOKINGS, [where("status", "in", ACTIVE_STATUSES)])
    active = [BookingView.from_document(d.id, d.data) for d in active_docs]
    return BookingReport(recent=recent, active=active)


def format_booking(booking: BookingView) -> list[str]:
    location = booking.location
    provider_location = booking.provider_location
    next_steps = sorted(allowed_transitions(booking.status))
    return [
        f"ID: {booking.id}",
        f"  Status: {booking.status} (next: {', '.join(next_steps) or 'none'})",
        f"  Admin Approved: {booking.admin_approved}",
        f"  Service: {booking.service_category or 'N/A'}",
        f"  Client: {booking.client_label}",
        f"  Provider: {booking.provider_label}",
        f"  Amount: {booking.amount if booking.amount is not None else 'N/A'}",
        f"  Location: {f'{location.latitude}, {location.longitude}' if location else 'N/A'}",
        f"  Provider Location: "
        f"{f'{provider_location.latitude}, {provider_location.longitude}' if provider_location else 'N/A'}",
        f"  Created: {booking.created_at or 'N/A'}",
        f"  Updated: {booking.updated_at or 'N/A'}",
    ]


@dataclass
class ConversationVisibility:
    conversation: ConversationView
    user_id: Optional[str] = None

    @property
    def is_participant(self) -> Optional[bool]:
        if self.user_id is None:
            return None
        return self.user_id in self.conversation.participants

    @property
    def is_deleted(self) -> Optional[bool]:
        if self.user_id is None:
            return None
        return self.conversation.deleted.get(self.user_id, False)

    @property
    def is_archived(self) -> Optional[bool]:
        if self.user_id is None:
            return None
        return self.conversation.archived.get(self.user_id, False)

    @property
    def visible(self) -> Optional[bool]:
        if self.user_id is None:
            return None
        return bool(self.is_participant and not self.is_deleted)


def conversation_report(
    store: RecordStore, conversation_id: str, user_id: Optional[str] = None
) -> ConversationVisibility:
    doc = store.get(CONVERSATIONS, conversation_id)
    view = ConversationView.model_validate({**doc.data, "id": doc.id})
    return ConversationVisibility(view, user_id)


def format_conversation(report: ConversationVisibility) -> list[str]:
    conv = report.conversation
    lines = [
        f"Conversation: {conv.id}",
        f"  participants: {conv.participants}",
        f"  unreadCount: {conv.unread_count}",
        f"  deleted: {conv.deleted}",
        f"  archived: {conv.archived}",
        f"  lastMessage: {conv.last_message!r}",
        f"  lastMessageTime: {conv.last_message_time or 'N/A'}",
    ]
    if report.user_id:
        lines += [
            f"  User {report.user_id}:",
            f"    participant: {report.is_participant}",
            f"    deleted: {report.is_deleted}",
            f"    archived: {report.is_archived}",
            f"    visible in inbox: {report.visible}",
        ]
    return lines


@dataclass
class BookingDetails:
    booking: BookingView
    data: dict[str, Any]

    def phase_field(self, name: str) -> str:
        """Stored value of a phase timestamp; ``N/A`` when the field is absent."""
        if name not in self.data:
            return "N/A"
        return str(self.data[name])


def booking_details(store: RecordStore, booking_id: str) -> BookingDetails:
    doc = store.get(BOOKINGS, booking_id)
    return BookingDetails(BookingView.from_document(doc.id, doc.data), doc.data)


def _raw_point(value: Any) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, Mapping):
        return f"{{latitude: {value.get('latitude')}, longitude: {value.get('longitude')}}}"
    if hasattr(value, "latitude") and hasattr(value, "longitude"):
        return f"GeoPoint({value.latitude}, {value.longitude})"
    return repr(value)


def format_booking_details(details: BookingDetails) -> list[str]:
    booking, data = details.booking, details.data
    location = booking.location
    lines = [
        "=== Booking Details ===",
        f"ID: {booking.id}",
        f"Status: {booking.status}",
        f"Admin Approved: {booking.admin_approved}",
        "--- Location Data ---",
        f"latitude: {data.get('latitude', 'N/A')}",
        f"longitude: {data.get('longitude', 'N/A')}",
        f"location: {_raw_point(data.get('location'))}",
        f"resolved location: {f'{location.latitude}, {location.longitude}' if location else 'N/A'}",
        f"address: {booking.address or 'N/A'}",
        f"providerLocation: {_raw_point(data.get('providerLocation'))}",
        "--- Client Info ---",
        f"clientId: {booking.client_id}",
        f"clientName: {booking.client_name}",
        "--- Provider Info ---",
        f"providerId: {booking.provider_id}",
        f"providerName: {booking.provider_name}",
        "--- Timestamps ---",
    ]
    lines += [f"{name}: {details.phase_field(name)}" for name in RESET_CLEARED_FIELDS]
    return lines


# ============== CONVERSATION PARTICIPANTS ==============

def user_display_name(data: Mapping[str, Any]) -> str:
    full_name = f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip()
    return full_name or data.get("email") or "Unknown"


@dataclass
class ParticipantInfo:
    user_id: str
    name: Optional[str] = None
    role: Optional[str] = None
    known: bool = False


@dataclass
class ConversationParticipants:
    conversation_id: str
    participants: list[ParticipantInfo]
    last_message: Optional[str] = None

    @property
    def unknown(self) -> list[str]:
        return [p.user_id for p in self.participants if not p.known]


def participants_report(
    store: RecordStore, conversation_ids: Optional[Iterable[str]] = None
) -> list[ConversationParticipants]:
    """Each conversation's participants resolved against the users collection."""
    users = {doc.id: doc.data for doc in store.query(USERS)}

    if conversation_ids:
        conversations = [store.get(CONVERSATIONS, cid) for cid in conversation_ids]
    else:
        conversations = store.query(CONVERSATIONS)

    reports = []
    for doc in conversations:
        infos = []
        for uid in doc.get("participants") or []:
            user = users.get(uid)
            if user is None:
                infos.append(ParticipantInfo(uid))
            else:
                infos.append(ParticipantInfo(uid, user_display_name(user), user.get("role"), known=True))
        reports.append(ConversationParticipants(doc.id, infos, doc.get("lastMessage")))
    return reports


def format_participants(report: ConversationParticipants) -> list[str]:
    lines = [f"Conversation: {report.conversation_id}", "  Participants:"]
    for p in report.participants:
        if p.known:
            lines.append(f"    - {p.user_id}: {p.name} ({p.role})")
        else:
            lines.append(f"    - {p.user_id}: UNKNOWN USER")
    lines.append(f"  Last message: {report.last_message}")
    return lines
