"""
SQLAlchemy ORM models (agency tenancy, clients, tasks, recurrence, reports)
"""
from datetime import date as date_type, datetime
from sqlalchemy import (
    String, Integer, Text, TIMESTAMP, Date, Boolean, ForeignKey, func, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from agencyflow.infrastructure.db.session import Base


class User(Base):
    """Platform user (agency staff, specialists, client portal users, admins)"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # SUPER_ADMIN / ADMIN / AGENCY / SPECIALIST / USER
    role: Mapped[str] = mapped_column(String(32), nullable=False, server_default="USER")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class Agency(Base):
    __tablename__ = "agencies"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class AgencyMember(Base):
    """Membership of a user in an agency"""
    __tablename__ = "agency_members"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("agency_id", "user_id", name="uq_agency_member"),
    )


class Client(Base):
    """Agency client (lifecycle-relevant columns)"""
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    agency_id: Mapped[int | None] = mapped_column(ForeignKey("agencies.id"), nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)  # primary account holder
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # PENDING / ACTIVE / SUSPENDED / REJECTED / CANCELED / ARCHIVED
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default="ACTIVE")
    canceled_end_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    scheduled_archive_at: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class ClientUser(Base):
    """Portal user linked to a client"""
    __tablename__ = "client_users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="ACTIVE")  # PENDING/ACTIVE/DISABLED

    __table_args__ = (
        UniqueConstraint("client_id", "user_id", name="uq_client_user"),
    )


class RecurringTaskRuleModel(Base):
    """Template that spawns a concrete task every time next_run_at comes due"""
    __tablename__ = "recurring_task_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    # Template fields copied verbatim into spawned tasks
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(32), nullable=True)
    estimated_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    proof: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    frequency: Mapped[str] = mapped_column(String(16), nullable=False)  # WEEKLY/MONTHLY/QUARTERLY/SEMIANNUAL
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0=Sunday..6, WEEKLY only
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1..31
    next_run_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_recurring_task_rules_due", "is_active", "next_run_at"),
    )


class TaskModel(Base):
    """Unit of work, created directly or spawned by a recurring rule"""
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    agency_id: Mapped[int | None] = mapped_column(ForeignKey("agencies.id", ondelete="CASCADE"), nullable=True, index=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    recurring_rule_id: Mapped[int | None] = mapped_column(
        ForeignKey("recurring_task_rules.id", ondelete="SET NULL"), nullable=True
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # TODO / IN_PROGRESS / REVIEW / NEEDS_APPROVAL / DONE
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default="TODO")
    due_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(32), nullable=True)
    estimated_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    proof: Mapped[list | None] = mapped_column(JSONB, nullable=True)  # [{"type", "value", "name"}]
    approval_notify_user_ids: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ReportScheduleModel(Base):
    """Recurring report delivery, one per client per cadence"""
    __tablename__ = "report_schedules"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)

    frequency: Mapped[str] = mapped_column(String(16), nullable=False)  # weekly/biweekly/monthly
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_of_day: Mapped[str] = mapped_column(String(5), nullable=False, server_default="09:00")
    recipients: Mapped[list] = mapped_column(JSONB, nullable=False)
    email_subject: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    next_run_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("client_id", "frequency", name="uq_report_schedule_client_frequency"),
    )


class SeoReportModel(Base):
    """Latest generated report for a client (one row per client)"""
    __tablename__ = "seo_reports"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, unique=True)
    schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("report_schedules.id", ondelete="SET NULL"), nullable=True
    )

    period: Mapped[str] = mapped_column(String(16), nullable=False)
    report_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="draft")  # draft/sent
    sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    recipients: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    email_subject: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class NotificationModel(Base):
    """In-app notification addressed to a user or to a whole agency"""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    agency_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
