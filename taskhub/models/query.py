from sqlalchemy import Boolean, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from taskhub.db.session import Base
from taskhub.models.common import IntIdMixin, TimestampMixin

class SavedQuery(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "queries"
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Ordered lists; order is significant for sort priority and filter replacement.
    filters: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    sort_criteria: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    column_names: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    group_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    display_sums: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    include_subprojects: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    visibility: Mapped[str] = mapped_column(String(20), default="private", nullable=False)
    starred: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_representation: Mapped[str] = mapped_column(String(20), default="list", nullable=False)
    show_hierarchies: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    timeline_visible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Baseline comparison points, e.g. ["P-1D", "PT0S"].
    timestamps: Mapped[list | None] = mapped_column(JSON, nullable=True)
