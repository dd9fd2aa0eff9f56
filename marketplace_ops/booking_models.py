"""
Pydantic views over the marketplace's Firestore documents.

Documents are stored with camelCase keys; the views accept them by alias and
ignore anything they do not model.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, ClassVar, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============== COLLECTIONS ==============

BOOKINGS = "bookings"
CONVERSATIONS = "conversations"
MESSAGES = "messages"
REVIEWS = "reviews"
USERS = "users"


# ============== ENUMS ==============

class BookingStatus(str, Enum):
    """Booking status values as stored in Firestore."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    TRAVELING = "traveling"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    PAYMENT_RECEIVED = "payment_received"


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


REVIEW_STATUS_DELETED = "deleted"


# ============== LOCATION / AMOUNT ACCESSORS ==============

class GeoPoint(BaseModel):
    latitude: float
    longitude: float


def _as_point(latitude: Any, longitude: Any) -> Optional[GeoPoint]:
    if latitude is None or longitude is None:
        return None
    try:
        return GeoPoint(latitude=float(latitude), longitude=float(longitude))
    except (TypeError, ValueError):
        return None


def resolve_location(
    data: Mapping[str, Any],
    structured: str = "location",
    flat: tuple[str, str] = ("latitude", "longitude"),
) -> Optional[GeoPoint]:
    """
    Read a location that may be stored either as a nested map or as two flat
    fields. The nested form wins when it is usable.
    """
    nested = data.get(structured)
    if isinstance(nested, Mapping):
        point = _as_point(nested.get("latitude"), nested.get("longitude"))
        if point:
            return point
    elif hasattr(nested, "latitude") and hasattr(nested, "longitude"):
        # Firestore GeoPoint
        point = _as_point(nested.latitude, nested.longitude)
        if point:
            return point

    if flat:
        return _as_point(data.get(flat[0]), data.get(flat[1]))
    return None


def resolve_provider_location(data: Mapping[str, Any]) -> Optional[GeoPoint]:
    return resolve_location(
        data,
        structured="providerLocation",
        flat=("providerLatitude", "providerLongitude"),
    )


AMOUNT_FIELDS = ("finalAmount", "providerPrice", "totalAmount")


def display_amount(data: Mapping[str, Any]) -> Optional[float]:
    for name in AMOUNT_FIELDS:
        value = data.get(name)
        if value is not None:
            return float(value)
    return None


def round_half_away(value: float, places: int = 2) -> float:
    """Round half-up on the shortest decimal repr of ``value``: 4.335 -> 4.34."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ============== DOCUMENT VIEWS ==============

class _DocumentView(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str


class BookingView(_DocumentView):
    status: Optional[str] = None
    admin_approved: Optional[bool] = Field(default=None, alias="adminApproved")
    client_id: Optional[str] = Field(default=None, alias="clientId")
    provider_id: Optional[str] = Field(default=None, alias="providerId")
    client_name: Optional[str] = Field(default=None, alias="clientName")
    provider_name: Optional[str] = Field(default=None, alias="providerName")
    service_category: Optional[str] = Field(default=None, alias="serviceCategory")
    address: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    accepted_at: Optional[datetime] = Field(default=None, alias="acceptedAt")
    traveling_at: Optional[datetime] = Field(default=None, alias="travelingAt")
    arrived_at: Optional[datetime] = Field(default=None, alias="arrivedAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    location: Optional[GeoPoint] = None
    provider_location: Optional[GeoPoint] = None
    amount: Optional[float] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "BookingView":
        fields = {
            k: v for k, v in data.items()
            if k not in ("location", "providerLocation")
        }
        return cls.model_validate(
            {
                **fields,
                "id": doc_id,
                "location": resolve_location(data),
                "provider_location": resolve_provider_location(data),
                "amount": display_amount(data),
            }
        )

    @property
    def client_label(self) -> str:
        return self.client_name or self.client_id or "unknown"

    @property
    def provider_label(self) -> str:
        return self.provider_name or self.provider_id or "unassigned"


class MessageView(_DocumentView):
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    body: Optional[str] = Field(default=None, alias="text")
    timestamp: Optional[datetime] = None


class ConversationView(_DocumentView):
    participants: list[str] = Field(default_factory=list)
    unread_count: dict[str, int] = Field(default_factory=dict, alias="unreadCount")
    deleted: dict[str, bool] = Field(default_factory=dict)
    archived: dict[str, bool] = Field(default_factory=dict)
    last_message: Optional[str] = Field(default=None, alias="lastMessage")
    last_message_time: Optional[datetime] = Field(default=None, alias="lastMessageTime")


class ReviewView(_DocumentView):
    provider_id: Optional[str] = Field(default=None, alias="providerId")
    rating: Optional[float] = None
    status: Optional[str] = None

    @property
    def counts_toward_rating(self) -> bool:
        return bool(self.rating) and self.status != REVIEW_STATUS_DELETED


class ProviderStats(BaseModel):
    """
    Canonical reputation values for one provider.

    Every value is written under each of its legacy field names so old and new
    readers agree.
    """
    provider_id: str
    completed_jobs: int = 0
    review_count: int = 0
    average_rating: float = 0.0
    # set by the aggregator when the stored aliases disagreed with these values
    changed: bool = False

    ALIASES: ClassVar[dict[str, tuple[str, ...]]] = {
        "completed_jobs": ("completedJobs", "jobsCompleted"),
        "review_count": ("reviewCount", "totalReviews"),
        "average_rating": ("rating", "averageRating"),
    }

    def to_update(self) -> dict[str, Any]:
        update: dict[str, Any] = {}
        for attr, names in self.ALIASES.items():
            value = getattr(self, attr)
            for name in names:
                update[name] = value
        return update

    @property
    def display_rating(self) -> str:
        return f"{self.average_rating:.2f}"
