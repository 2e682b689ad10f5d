from datetime import datetime

from sqlalchemy import JSON, String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from eduadmin.database import Base


class RolePermissionOverride(Base):
    """Server-side permission override for one role id."""

    __tablename__ = "role_permission_overrides"

    role_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    permissions: Mapped[dict] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
