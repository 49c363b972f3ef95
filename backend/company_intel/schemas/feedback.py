import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from ..models.feedback import FeedbackStatus, FeedbackType

MIN_TITLE_LEN = 3
MAX_TITLE_LEN = 200
MIN_MESSAGE_LEN = 10
MAX_MESSAGE_LEN = 5000
MAX_RESOLUTION_NOTES_LEN = 2000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _strip(v):
    if isinstance(v, str):
        return v.strip() or None
    return v


class FeedbackIn(BaseModel):
    type: str = FeedbackType.OTHER
    title: str | None = None
    name: str | None = None
    email: str | None = None
    message: str
    page_path: str | None = None
    report_id: str | None = None

    @field_validator("title", "name", "email", "page_path", "report_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip(v)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v):
        v = _strip(v) or FeedbackType.OTHER
        if v not in FeedbackType.ALL:
            raise ValueError(f"Invalid type. Must be one of: {', '.join(FeedbackType.ALL)}")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if v is None:
            return v
        if len(v) < MIN_TITLE_LEN:
            raise ValueError(f"Title must be at least {MIN_TITLE_LEN} characters.")
        if len(v) > MAX_TITLE_LEN:
            raise ValueError(f"Title must be at most {MAX_TITLE_LEN} characters.")
        return v

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Description/message is required.")
        if len(v) < MIN_MESSAGE_LEN:
            raise ValueError(f"Description must be at least {MIN_MESSAGE_LEN} characters.")
        if len(v) > MAX_MESSAGE_LEN:
            raise ValueError(f"Description must be at most {MAX_MESSAGE_LEN} characters.")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v is not None and not _EMAIL_RE.match(v):
            raise ValueError("Please provide a valid email address.")
        return v


class FeedbackUpdate(BaseModel):
    """
    Partial update. An explicit ``null`` or empty ``resolution_notes`` clears
    the notes; omitting the field leaves them unchanged.
    """
    status: str | None = None
    resolution_notes: str | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in FeedbackStatus.ALL:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(FeedbackStatus.ALL)}")
        return v

    @field_validator("resolution_notes")
    @classmethod
    def validate_notes(cls, v):
        if v is None:
            return v
        if len(v) > MAX_RESOLUTION_NOTES_LEN:
            raise ValueError(f"Resolution notes must be at most {MAX_RESOLUTION_NOTES_LEN} characters.")
        return v.strip() or None


class FeedbackOut(BaseModel):
    id: UUID
    type: str
    status: str
    title: str | None = None
    name: str | None = None
    email: str | None = None
    message: str
    page_path: str | None = None
    report_id: str | None = None
    resolution_notes: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
