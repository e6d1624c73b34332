from sqlalchemy import Integer, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from taskhub.db.session import Base
from taskhub.models.common import IntIdMixin, TimestampMixin

class Member(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_members_project_user"),)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # Permission names granted through the member's roles, flattened.
    permissions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
