import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .common import GPSFix, empty_to_none


TaskStatus = Literal["pending", "assigned", "in-progress", "completed", "review", "rejected"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskCategory = Literal["lawn-mowing", "tree-trimming", "landscaping", "irrigation", "pest-control", "other"]


class MaterialLine(BaseModel):
    inventory_item_id: uuid.UUID
    quantity: float = Field(gt=0)
    name: Optional[str] = None
    unit: Optional[Literal["kg", "liter", "piece"]] = None


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1, max_length=2000)
    notes: Optional[str] = Field(default=None, max_length=1000)
    site_id: uuid.UUID
    section_ids: List[uuid.UUID] = Field(min_length=1)
    client_id: Optional[uuid.UUID] = None
    worker_id: Optional[uuid.UUID] = None
    branch_id: Optional[uuid.UUID] = None
    priority: TaskPriority = "medium"
    category: TaskCategory = "other"
    scheduled_date: datetime
    estimated_duration: float = Field(default=2, gt=0)
    cost_labor: float = Field(default=0, ge=0)
    cost_materials: float = Field(default=0, ge=0)
    materials: List[MaterialLine] = []

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return empty_to_none(v)

    @field_validator("section_ids")
    @classmethod
    def unique_sections(cls, v):
        seen = []
        for sid in v:
            if sid not in seen:
                seen.append(sid)
        return seen


class TaskUpdate(BaseModel):
    """Descriptive fields only; status and worker change through the lifecycle operations."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    notes: Optional[str] = Field(default=None, max_length=1000)
    priority: Optional[TaskPriority] = None
    category: Optional[TaskCategory] = None
    scheduled_date: Optional[datetime] = None
    estimated_duration: Optional[float] = Field(default=None, gt=0)
    cost_labor: Optional[float] = Field(default=None, ge=0)
    cost_materials: Optional[float] = Field(default=None, ge=0)

    @field_validator("estimated_duration", "cost_labor", "cost_materials")
    @classmethod
    def not_null(cls, v):
        # Omit the field to leave it alone; these columns cannot be cleared
        if v is None:
            raise ValueError("value cannot be null")
        return v


class ReviewDecision(BaseModel):
    decision: Literal["approved", "rejected"]
    comments: Optional[str] = None


class FeedbackCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)
    image_number: Optional[int] = Field(default=None, ge=1)

    @field_validator("comment", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return empty_to_none(v)


class TaskMediaResponse(BaseModel):
    id: uuid.UUID
    slot: str
    url: str
    storage_id: Optional[str] = None
    thumbnail: Optional[str] = None
    media_kind: str
    format: Optional[str] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    uploaded_by: Optional[uuid.UUID] = None
    is_visible_to_client: bool = False

    class Config:
        from_attributes = True


class TaskReferenceMediaResponse(BaseModel):
    id: uuid.UUID
    section_id: uuid.UUID
    url: str
    storage_id: Optional[str] = None
    caption: Optional[str] = None
    media_kind: str = "image"
    format: Optional[str] = None
    duration: Optional[float] = None
    qty: int = 1
    description: Optional[str] = None
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TaskMaterialResponse(BaseModel):
    id: uuid.UUID
    inventory_item_id: Optional[uuid.UUID] = None
    name: Optional[str] = None
    quantity: float
    unit: Optional[str] = None
    confirmed: bool = False
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True


class FeedbackResponse(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = None
    image_number: Optional[int] = None
    image_url: Optional[str] = None
    image_storage_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    is_satisfied_only: bool = False


class TaskResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    notes: Optional[str] = None
    site_id: uuid.UUID
    client_id: uuid.UUID
    worker_id: Optional[uuid.UUID] = None
    branch_id: Optional[uuid.UUID] = None
    section_ids: List[uuid.UUID] = []
    status: TaskStatus
    priority: str
    category: str
    scheduled_date: datetime
    estimated_duration: float
    actual_duration: float = 0
    start_fix: Optional[GPSFix] = None
    end_fix: Optional[GPSFix] = None
    cost_labor: float = 0
    cost_materials: float = 0
    cost_total: float = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    review_status: str = "pending"
    review_comments: Optional[str] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    feedback: Optional[FeedbackResponse] = None
    before_media: List[TaskMediaResponse] = []
    after_media: List[TaskMediaResponse] = []
    reference_media: List[TaskReferenceMediaResponse] = []
    materials: List[TaskMaterialResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_task(cls, task, client_view: bool = False) -> "TaskResponse":
        """Build the response; clients only ever see media flagged visible to them."""

        def media(slot):
            items = task.media_in(slot)
            if client_view:
                items = [m for m in items if m.is_visible_to_client]
            return [TaskMediaResponse.model_validate(m) for m in items]

        start_fix = None
        if task.start_latitude is not None and task.start_longitude is not None:
            start_fix = GPSFix(latitude=task.start_latitude, longitude=task.start_longitude, recorded_at=task.start_recorded_at)
        end_fix = None
        if task.end_latitude is not None and task.end_longitude is not None:
            end_fix = GPSFix(latitude=task.end_latitude, longitude=task.end_longitude, recorded_at=task.end_recorded_at)
        feedback = None
        if task.has_feedback:
            feedback = FeedbackResponse(
                rating=task.feedback_rating,
                comment=task.feedback_comment,
                image_number=task.feedback_image_number,
                image_url=task.feedback_image_url,
                image_storage_id=task.feedback_image_storage_id,
                submitted_at=task.feedback_submitted_at,
                is_satisfied_only=bool(task.feedback_is_satisfied_only),
            )
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            notes=task.notes,
            site_id=task.site_id,
            client_id=task.client_id,
            worker_id=task.worker_id,
            branch_id=task.branch_id,
            section_ids=task.section_ids,
            status=task.status,
            priority=task.priority,
            category=task.category,
            scheduled_date=task.scheduled_date,
            estimated_duration=task.estimated_duration,
            actual_duration=task.actual_duration or 0,
            start_fix=start_fix,
            end_fix=end_fix,
            cost_labor=task.cost_labor or 0,
            cost_materials=task.cost_materials or 0,
            cost_total=task.cost_total or 0,
            started_at=task.started_at,
            completed_at=task.completed_at,
            review_status=task.review_status,
            review_comments=task.review_comments,
            reviewed_by=task.reviewed_by,
            reviewed_at=task.reviewed_at,
            feedback=feedback,
            before_media=media("before"),
            after_media=media("after"),
            reference_media=[TaskReferenceMediaResponse.model_validate(r) for r in task.reference_media],
            materials=[TaskMaterialResponse.model_validate(m) for m in task.materials],
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
