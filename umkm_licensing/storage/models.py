"""SQLAlchemy models for the UMKM licensing core."""

import datetime as dt
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, String, Text
)
from sqlalchemy.orm import Mapped, mapped_column

from umkm_licensing.storage.db import Base


class LicenseApplicationRecord(Base):
    """License application row; enum fields are stored as their string values."""

    __tablename__ = "license_applications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    applicant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    license_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_stages: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    assigned_reviewer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    estimated_processing_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actual_processing_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    estimated_completion_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    license_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    issue_date: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    issuing_authority: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_license_applications_reviewer_status", "assigned_reviewer_id", "status"),
        Index("ix_license_applications_status_expiry", "status", "expiry_date"),
    )


class StatusHistoryRecord(Base):
    """Append-only audit trail of status transitions."""

    __tablename__ = "application_status_history"

    # Insertion order breaks ties between equal timestamps
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    application_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("license_applications.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_system_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_status_history_application_changed", "application_id", "changed_at"),
    )


class LicenseDocumentRecord(Base):
    """Supporting document metadata; file contents live outside the database."""

    __tablename__ = "license_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    application_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("license_applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    uploaded_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
