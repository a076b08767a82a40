from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from models.types import JSONType, new_uuid


class Artifact(Base):
    __tablename__ = "artifacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    contact_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    type: Mapped[str] = mapped_column(String(32), nullable=False)  # meeting | voice_memo | email | note | ...
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    # "metadata" is reserved on declarative classes
    artifact_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    ai_parsing_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
