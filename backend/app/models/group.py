"""Group SQLAlchemy ORM model (crew/team membership used to scope identification)"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String, Table
from sqlalchemy.orm import relationship

from app.core.database import Base


group_members = Table(
    "group_members",
    Base.metadata,
    Column("group_id", String(36), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Group(Base):
    """Named set of users within a tenant."""

    __tablename__ = "groups"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    members = relationship("User", secondary=group_members, lazy="selectin")

    @property
    def member_ids(self) -> set[str]:
        return {member.id for member in self.members}

    def __repr__(self):
        return f"<Group(id={self.id}, tenant_id={self.tenant_id}, name={self.name})>"
