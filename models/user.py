# models/user.py
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func, false as sa_false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class User(Base):
    __tablename__ = "users"

    # Same UUID as Supabase auth.users.id (the JWT "sub" claim)
    id: Mapped[str] = mapped_column(String(36), primary_key=True, index=True)

    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, server_default=sa_false(), nullable=False)

    onboarding_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    onboarding_state = relationship(
        "OnboardingState",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    subscription = relationship(
        "Subscription",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    feature_overrides = relationship(
        "UserFeatureOverride",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    integrations = relationship(
        "UserIntegration",
        back_populates="user",
        cascade="all, delete-orphan",
    )
