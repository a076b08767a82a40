# models/onboarding_state.py
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, func, false as sa_false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.types import JSONType, new_uuid


class OnboardingState(Base):
    __tablename__ = "onboarding_state"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )

    # Progress
    current_screen: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)
    completed_screens: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Captured artifacts (voice memos live in artifacts)
    challenge_voice_memo_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    goal_voice_memo_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    profile_enhancement_voice_memo_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    goal_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    goal_contact_urls: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    imported_goal_contacts: Mapped[list | dict | None] = mapped_column(JSONType, nullable=True)
    linkedin_contacts_added: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Integrations
    linkedin_connected: Mapped[bool] = mapped_column(Boolean, default=False, server_default=sa_false(), nullable=False)
    gmail_connected: Mapped[bool] = mapped_column(Boolean, default=False, server_default=sa_false(), nullable=False)
    calendar_connected: Mapped[bool] = mapped_column(Boolean, default=False, server_default=sa_false(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    user = relationship("User", back_populates="onboarding_state")
