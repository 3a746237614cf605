"""Caller privilege resolution."""
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from app.models import Document, UserRole, Role


class CallerPrivilege(str, Enum):
    NONE = "none"
    OWNER_ADMIN = "owner_admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_elevated(self) -> bool:
        return self is not CallerPrivilege.NONE


@dataclass
class PermissionResult:
    is_super_admin: bool
    is_owner_admin: bool
    document: Optional[Document]

    @property
    def privilege(self) -> CallerPrivilege:
        if self.is_super_admin:
            return CallerPrivilege.SUPER_ADMIN
        if self.is_owner_admin:
            return CallerPrivilege.OWNER_ADMIN
        return CallerPrivilege.NONE


class PermissionChecker:
    """Resolve a caller's standing for one document, once per request."""

    def __init__(self, db: Session):
        self.db = db

    def check(self, user_id: Optional[uuid.UUID], document_slug: str) -> PermissionResult:
        document = self.db.query(Document).filter(Document.slug == document_slug).first()
        if user_id is None:
            return PermissionResult(False, False, document)

        roles = self.db.query(UserRole).filter(UserRole.user_id == user_id).all()
        is_super_admin = any(r.role == Role.SUPER_ADMIN for r in roles)
        is_owner_admin = document is not None and any(
            r.role == Role.OWNER_ADMIN and r.owner_id == document.owner_id for r in roles
        )
        return PermissionResult(is_super_admin, is_owner_admin, document)

    def is_super_admin(self, user_id: Optional[uuid.UUID]) -> bool:
        if user_id is None:
            return False
        return self.db.query(UserRole).filter(
            UserRole.user_id == user_id,
            UserRole.role == Role.SUPER_ADMIN,
        ).first() is not None
