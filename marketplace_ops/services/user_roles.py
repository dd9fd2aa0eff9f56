"""
Find and repair user documents without a ``role``.
"""
from dataclasses import dataclass
from typing import Optional

from marketplace_ops.booking_models import USERS, UserRole
from marketplace_ops.core.logging import logger
from marketplace_ops.store import SERVER_TIMESTAMP, Document, RecordStore


@dataclass
class RoleFix:
    user_id: str
    email: Optional[str]
    status: Optional[str]
    role: str
    previous_role: Optional[str] = None
    written: bool = False

    @property
    def changed(self) -> bool:
        return self.written


def missing_role(doc: Document) -> bool:
    return doc.get("role") in (None, "")


def infer_role(doc: Document) -> str:
    """Accounts still awaiting approval are provider sign-ups."""
    if doc.get("status") == "pending":
        return UserRole.PROVIDER.value
    return UserRole.CLIENT.value


def scan_missing_roles(store: RecordStore) -> list[Document]:
    return [doc for doc in store.query(USERS) if missing_role(doc)]


def plan_role_fixes(store: RecordStore) -> list[RoleFix]:
    return [
        RoleFix(
            user_id=doc.id,
            email=doc.get("email"),
            status=doc.get("status"),
            role=infer_role(doc),
        )
        for doc in scan_missing_roles(store)
    ]


def apply_role_fix(store: RecordStore, fix: RoleFix) -> RoleFix:
    store.update(USERS, fix.user_id, {"role": fix.role, "updatedAt": SERVER_TIMESTAMP})
    fix.written = True
    logger.info(
        {
            "event_type": "user_repair",
            "event_name": "role_assigned",
            "user_id": fix.user_id,
            "role": fix.role,
        }
    )
    return fix


def set_user_role(store: RecordStore, user_id: str, role: str) -> RoleFix:
    """Assign ``role`` to one user. Raises NotFoundError for an unknown uid."""
    doc = store.get(USERS, user_id)
    fix = RoleFix(
        user_id=user_id,
        email=doc.get("email"),
        status=doc.get("status"),
        role=UserRole(role).value,
        previous_role=doc.get("role"),
    )
    return apply_role_fix(store, fix)
