"""Login attempt model for the database-backed state store."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from launchbridge.database import Base


class LoginAttemptRecord(Base):
    """In-flight OIDC login initiation, keyed by state.

    Rows are one-time use: the launch leg deletes the row it reads.
    """

    __tablename__ = "lti_login_attempts"

    state: Mapped[str] = mapped_column(String(128), primary_key=True, nullable=False)
    nonce: Mapped[str] = mapped_column(String(128), nullable=False)
    issuer: Mapped[str] = mapped_column(String(512), nullable=False)
    target_link_uri: Mapped[str] = mapped_column(Text, nullable=False)
    login_hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    lti_message_hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    deployment_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_lti_login_attempts_created_at", "created_at"),)

    def created_at_utc(self) -> datetime:
        """SQLite drops tzinfo, so normalize to aware UTC."""
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return created
