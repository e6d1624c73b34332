from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from taskhub.db.session import Base
from taskhub.models.common import IntIdMixin, TimestampMixin

class Status(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "statuses"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
