import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Index,
    Uuid,
    event,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


TASK_STATUSES = ("pending", "assigned", "in-progress", "completed", "review", "rejected")
TERMINAL_TASK_STATUSES = ("completed", "rejected")
MEDIA_SLOTS = ("before", "after")


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    # Naive UTC throughout; SQLite drops tzinfo on the way back anyway
    return datetime.utcnow()


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(20), unique=True)


class User(Base):
    """Staff accounts: admins and field workers."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))  # WhatsApp-capable number for notifications
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="worker", index=True)  # admin|worker
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("branches.id", ondelete="SET NULL"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    completed_tasks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    whatsapp: Mapped[Optional[str]] = mapped_column(String(50))
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("branches.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(20), default="active")  # active|inactive
    total_tasks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_tasks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("branches.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    google_maps_link: Mapped[Optional[str]] = mapped_column(String(1024))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    total_area: Mapped[float] = mapped_column(Float, default=0)
    site_type: Mapped[str] = mapped_column(String(30), default="residential")
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    cover_image_url: Mapped[Optional[str]] = mapped_column(String(1024))
    cover_image_storage_id: Mapped[Optional[str]] = mapped_column(String(1024))
    # Only ever incremented by the task lifecycle engine
    total_tasks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_tasks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_visit: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    sections: Mapped[List["SiteSection"]] = relationship(
        "SiteSection",
        back_populates="site",
        cascade="all, delete-orphan",
        order_by="SiteSection.sort_index",
    )

    @property
    def completion_rate(self) -> float:
        if not self.total_tasks:
            return 0.0
        return round(self.completed_tasks / self.total_tasks * 100, 1)

    def section(self, section_id: uuid.UUID) -> Optional["SiteSection"]:
        for s in self.sections:
            if s.id == section_id:
                return s
        return None


class SiteSection(Base):
    """A section is owned by its site and cannot outlive it."""
    __tablename__ = "site_sections"

    id: Mapped[uuid.UUID] = uuid_pk()
    site_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    area: Mapped[float] = mapped_column(Float, default=0)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|in-progress|completed|maintenance
    last_worked_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Dashboard summary of the latest transition seen for this section
    last_task_status: Mapped[Optional[str]] = mapped_column(String(20))
    last_task_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_task_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    sort_index: Mapped[int] = mapped_column(Integer, default=0)

    site: Mapped["Site"] = relationship("Site", back_populates="sections")
    reference_media: Mapped[List["SectionReferenceMedia"]] = relationship(
        "SectionReferenceMedia",
        back_populates="section",
        cascade="all, delete-orphan",
        order_by="SectionReferenceMedia.sort_index",
    )


class SectionReferenceMedia(Base):
    __tablename__ = "section_reference_media"

    id: Mapped[uuid.UUID] = uuid_pk()
    section_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("site_sections.id", ondelete="CASCADE"), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_id: Mapped[Optional[str]] = mapped_column(String(1024))
    caption: Mapped[Optional[str]] = mapped_column(String(255))
    media_kind: Mapped[str] = mapped_column(String(10), default="image")  # image|video
    format: Mapped[Optional[str]] = mapped_column(String(20))
    duration: Mapped[Optional[float]] = mapped_column(Float)
    qty: Mapped[int] = mapped_column(Integer, default=1)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    sort_index: Mapped[int] = mapped_column(Integer, default=0)

    section: Mapped["SiteSection"] = relationship("SiteSection", back_populates="reference_media")


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    branch_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String(10), nullable=False, default="piece")  # kg|liter|piece
    quantity_current: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    quantity_minimum: Mapped[float] = mapped_column(Float, nullable=False, default=10)  # reorder threshold
    description: Mapped[Optional[str]] = mapped_column(String(500))
    last_restocked: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    low_stock_alert_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    low_stock_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def stock_status(self) -> str:
        if self.quantity_current <= 0:
            return "out-of-stock"
        if self.quantity_current <= self.quantity_minimum:
            return "low-stock"
        return "in-stock"


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(String(2000), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000))

    site_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    worker_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("branches.id", ondelete="SET NULL"))

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    priority: Mapped[str] = mapped_column(String(20), default="medium")
    category: Mapped[str] = mapped_column(String(30), default="other")

    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    estimated_duration: Mapped[float] = mapped_column(Float, default=2)  # hours
    actual_duration: Mapped[float] = mapped_column(Float, default=0)  # hours, derived

    # GPS trail recorded at worker-initiated transitions
    start_latitude: Mapped[Optional[float]] = mapped_column(Float)
    start_longitude: Mapped[Optional[float]] = mapped_column(Float)
    start_recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_latitude: Mapped[Optional[float]] = mapped_column(Float)
    end_longitude: Mapped[Optional[float]] = mapped_column(Float)
    end_recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    cost_labor: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    cost_materials: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    cost_total: Mapped[float] = mapped_column(Float, default=0, nullable=False)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Admin review
    review_status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|rejected
    review_comments: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Client feedback, at most one record per task
    feedback_rating: Mapped[Optional[int]] = mapped_column(Integer)
    feedback_comment: Mapped[Optional[str]] = mapped_column(Text)
    feedback_image_number: Mapped[Optional[int]] = mapped_column(Integer)
    feedback_image_url: Mapped[Optional[str]] = mapped_column(String(1024))
    feedback_image_storage_id: Mapped[Optional[str]] = mapped_column(String(1024))
    feedback_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    feedback_is_satisfied_only: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    section_links: Mapped[List["TaskSection"]] = relationship(
        "TaskSection", cascade="all, delete-orphan", order_by="TaskSection.position"
    )
    media: Mapped[List["TaskMedia"]] = relationship(
        "TaskMedia", cascade="all, delete-orphan", order_by="TaskMedia.position"
    )
    reference_media: Mapped[List["TaskReferenceMedia"]] = relationship(
        "TaskReferenceMedia", cascade="all, delete-orphan", order_by="TaskReferenceMedia.position"
    )
    materials: Mapped[List["TaskMaterial"]] = relationship(
        "TaskMaterial", cascade="all, delete-orphan", order_by="TaskMaterial.position"
    )

    __table_args__ = (
        Index("idx_tasks_client_status", "client_id", "status"),
        Index("idx_tasks_worker_status", "worker_id", "status"),
        Index("idx_tasks_branch_status", "branch_id", "status"),
        Index("idx_tasks_site", "site_id"),
        Index("idx_tasks_scheduled", "scheduled_date"),
        Index("idx_tasks_status_priority", "status", "priority"),
    )

    @property
    def section_ids(self) -> List[uuid.UUID]:
        return [link.section_id for link in self.section_links]

    def media_in(self, slot: str) -> List["TaskMedia"]:
        return [m for m in self.media if m.slot == slot]

    @property
    def has_feedback(self) -> bool:
        return self.feedback_submitted_at is not None


class TaskSection(Base):
    """Ordered, non-owning reference from a task to a section of its site."""
    __tablename__ = "task_sections"

    task_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    section_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)


class TaskMedia(Base):
    __tablename__ = "task_media"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    slot: Mapped[str] = mapped_column(String(10), nullable=False)  # before|after
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_id: Mapped[Optional[str]] = mapped_column(String(1024))
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1024))
    media_kind: Mapped[str] = mapped_column(String(10), default="image")  # image|video
    format: Mapped[Optional[str]] = mapped_column(String(20))
    duration: Mapped[Optional[float]] = mapped_column(Float)  # seconds, videos only
    width: Mapped[Optional[int]] = mapped_column(Integer)
    height: Mapped[Optional[int]] = mapped_column(Integer)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    is_visible_to_client: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (Index("idx_task_media_task_slot", "task_id", "slot"),)


class TaskReferenceMedia(Base):
    """Copy of a section reference item taken when the task was created."""
    __tablename__ = "task_reference_media"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)  # originating section
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_id: Mapped[Optional[str]] = mapped_column(String(1024))
    caption: Mapped[Optional[str]] = mapped_column(String(255))
    media_kind: Mapped[str] = mapped_column(String(10), default="image")
    format: Mapped[Optional[str]] = mapped_column(String(20))
    duration: Mapped[Optional[float]] = mapped_column(Float)
    qty: Mapped[int] = mapped_column(Integer, default=1)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    position: Mapped[int] = mapped_column(Integer, default=0)


class TaskMaterial(Base):
    __tablename__ = "task_materials"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("inventory_items.id", ondelete="SET NULL"))
    name: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    unit: Mapped[Optional[str]] = mapped_column(String(10))
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    position: Mapped[int] = mapped_column(Integer, default=0)


class Notification(Base):
    """Outbound notification records (WhatsApp)"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(50))
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="whatsapp")
    template_key: Mapped[Optional[str]] = mapped_column(String(100))
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|skipped|failed
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_notifications_recipient_status", "recipient_id", "status"),
    )


def _recompute_task_derived(mapper, connection, task: Task) -> None:
    if task.started_at and task.completed_at:
        hours = (task.completed_at - task.started_at).total_seconds() / 3600
        task.actual_duration = round(hours, 2)
    task.cost_total = (task.cost_labor or 0) + (task.cost_materials or 0)


event.listen(Task, "before_insert", _recompute_task_derived)
event.listen(Task, "before_update", _recompute_task_derived)
