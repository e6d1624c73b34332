from datetime import date

from sqlalchemy import Boolean, Date, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from taskhub.db.session import Base
from taskhub.models.common import IntIdMixin, TimestampMixin

class WorkPackage(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "work_packages"
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    priority_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    author_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    assigned_to_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    responsible_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    version_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    parent_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    done_ratio: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
