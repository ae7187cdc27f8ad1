# backend/mrodb/apps/publications/models.py
#
# Technical publications (manual revisions) with their file and an
# immutable revision history.
#
# - One publication owns its attachments (composition).
# - Revision rows reference the publication id without a foreign key so
#   the history outlives a deleted publication.

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    desc,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevisionChangeType(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    ATTACHMENT_REPLACED = "ATTACHMENT_REPLACED"


class TechnicalPublication(Base):
    __tablename__ = "technical_publications"
    __table_args__ = (
        Index("ix_technical_publications_company_revision_date", "company_id", desc("revision_date")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    # Stored at 12:00 UTC of the calendar day entered.
    revision_date = Column(DateTime(timezone=True), nullable=False, index=True)
    manual_description = Column(String(255), nullable=False)
    revision_number = Column(String(64), nullable=False)
    owner = Column(String(255), nullable=False)
    comment = Column(Text, nullable=True)

    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    attachments = relationship(
        "TechnicalPublicationAttachment",
        back_populates="publication",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="TechnicalPublicationAttachment.created_at",
    )

    def __repr__(self) -> str:
        return f"<TechnicalPublication id={self.id} rev={self.revision_number}>"


class TechnicalPublicationAttachment(Base):
    __tablename__ = "technical_publication_attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    publication_id = Column(
        String(36),
        ForeignKey("technical_publications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    file_name = Column(String(255), nullable=False)
    file_key = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(128), nullable=False)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    publication = relationship("TechnicalPublication", back_populates="attachments")


class TechnicalPublicationRevision(Base):
    """Write-once history entry; one per mutation that changed something."""

    __tablename__ = "technical_publication_revisions"
    __table_args__ = (
        Index("ix_tp_revisions_publication_time", "publication_id", desc("modified_at")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    publication_id = Column(String(36), nullable=False, index=True)

    change_type = Column(
        SAEnum(RevisionChangeType, name="tp_revision_change_type", native_enum=False),
        nullable=False,
    )
    change_description = Column(Text, nullable=False)
    changed_fields = Column(JSON, nullable=True)
    previous_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    modified_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    modified_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
