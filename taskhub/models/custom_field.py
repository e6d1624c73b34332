from sqlalchemy import Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from taskhub.db.session import Base
from taskhub.models.common import IntIdMixin, TimestampMixin

class CustomField(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "custom_fields"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_format: Mapped[str] = mapped_column(String(30), nullable=False)  # string | text | int | float | date | bool | user
    is_filter: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    searchable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class CustomValue(Base, IntIdMixin):
    __tablename__ = "custom_values"
    __table_args__ = (UniqueConstraint("custom_field_id", "customized_id", name="uq_custom_values_field_row"),)
    custom_field_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    customized_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
