"""Local store persistence model (one encrypted value per key)."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from yappypay.common.db import Base


class ConfigEntry(Base):
    """One configuration value, Fernet-encrypted at rest."""

    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value_encrypted: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
