"""UserRole model."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from sqlalchemy.dialects.postgresql import UUID
from app.db.base import Base


class Role:
    SUPER_ADMIN = "super_admin"
    OWNER_ADMIN = "owner_admin"


class UserRole(Base):
    """Elevated role granted to a user; owner_admin roles are scoped to an owner."""

    __tablename__ = "user_roles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    role = Column(String(30), nullable=False)
    owner_id = Column(UUID(as_uuid=True))
    created_at = Column(DateTime, default=datetime.utcnow)
