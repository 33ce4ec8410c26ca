"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from coupleapp.utils import parse_calendar_date


def _calendar_date(value: str) -> str:
    try:
        parse_calendar_date(value)
    except ValueError:
        raise ValueError("date must be a valid calendar date in YYYY-MM-DD format")
    return value


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreate(BaseModel):
    """
    Pydantic model for a new chat message.

    receiver defaults to "all" (broadcast) when omitted or empty.
    """
    sender: str = Field(..., min_length=1, description="Sender name")
    receiver: Optional[str] = Field(None, description="Receiver name, or 'all'")
    content: str = Field(..., min_length=1, description="Message text")
    timestamp: str = Field(
        ...,
        min_length=1,
        description="Client timestamp in ISO-8601 format (e.g., 2024-01-01T00:00:00Z)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "sender": "alice",
                    "receiver": "bob",
                    "content": "hi",
                    "timestamp": "2024-01-01T00:00:00Z"
                }
            ]
        }
    }


class DiaryCreate(BaseModel):
    user: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1, description="Diary day, YYYY-MM-DD")
    content: str = Field(..., min_length=1)
    timestamp: str = Field(..., min_length=1)
    tags: Optional[str] = Field(None, description="Free-form tags")

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _calendar_date(v)


class DiaryUpdate(BaseModel):
    """Content and tags replace the stored values; the diary day is kept."""
    content: str = Field(..., min_length=1)
    tags: Optional[str] = None


class LogEntryIn(BaseModel):
    """
    One entry of a log batch. All four fields are required and non-blank;
    a single invalid entry rejects the whole batch.
    """
    timestamp: str = Field(..., min_length=1)
    level: str = Field(..., min_length=1)
    user: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)

    @field_validator("timestamp", "level", "user", "message")
    @classmethod
    def validate_not_blank(cls, v: str, info) -> str:
        if not v.strip():
            raise ValueError(f"{info.field_name} must not be blank")
        return v


class AnniversaryBase(BaseModel):
    title: str = Field(..., min_length=1)
    date: str = Field(..., description="Origin occurrence, YYYY-MM-DD")
    description: str = ""
    photos: str = ""
    is_recurring: bool = False
    reminder_days: int = Field(default=1, ge=0, le=365)
    category: str = "love"

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _calendar_date(v)


class AnniversaryCreate(AnniversaryBase):
    created_by: str = Field(..., min_length=1)


class AnniversaryUpdate(AnniversaryBase):
    """Full-field replacement; the author and creation time are kept."""


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Error description")
    details: Optional[dict] = None


class MessageResponse(BaseModel):
    """Response model for a stored chat message."""
    id: int
    sender: str
    receiver: str
    content: str
    timestamp: str

    model_config = {"from_attributes": True}


class DuplicateGroupResponse(BaseModel):
    """Response model for one duplicate group; nothing is deleted by reporting it."""
    sender: str
    receiver: str
    content: str
    timestamp: str
    count: int = Field(..., ge=2, description="Rows sharing this content")
    keep_id: int = Field(..., description="Id that survives a purge")

    model_config = {"from_attributes": True}


class PurgeResponse(BaseModel):
    removed: int = Field(..., ge=0, description="Duplicate rows deleted")


class DiaryResponse(BaseModel):
    """Response model for a diary entry."""
    id: int
    user: str
    date: str
    content: str
    timestamp: str
    tags: str

    model_config = {"from_attributes": True}


class DeleteResponse(BaseModel):
    """Response model for a successful delete."""
    deleted: bool = True
    changes: int = 1


class LogBatchResponse(BaseModel):
    """Response model for a committed log batch."""
    # Number of entries written; a batch is all or nothing
    saved: int = Field(..., ge=1)
    success: bool = True


class LogResponse(BaseModel):
    id: int
    timestamp: str
    level: str
    user: str
    message: str

    model_config = {"from_attributes": True}


class AnniversaryResponse(BaseModel):
    """Response model for an anniversary event."""
    id: int
    title: str
    date: str
    description: str
    photos: str
    is_recurring: bool
    reminder_days: int
    category: str
    created_by: str
    create_time: str

    model_config = {"from_attributes": True}


class UpcomingAnniversaryResponse(AnniversaryResponse):
    """An anniversary with its projected next occurrence."""
    next_occurrence: str = Field(..., description="Next occurrence, YYYY-MM-DD")
    days_until: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
