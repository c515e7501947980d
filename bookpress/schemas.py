# bookpress/schemas.py
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

class ChildProfile(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=18)
    gender: Optional[str] = None

class UploadRef(BaseModel):
    role: Literal["child", "supporting", "location"]
    image: str = Field(..., description="https URL, gs:// URI, data URL or local path")
    name: Optional[str] = None
    relationship: Optional[str] = None

class StoryRequest(BaseModel):
    story_id: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_-]{1,64}$")
    title: str = Field(..., min_length=1)
    child: ChildProfile = Field(default_factory=ChildProfile)
    brief: str = Field("", description="Free-text brief from the order form")
    reading_age: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    style_prompt: Optional[str] = None
    page_count: int = Field(12, ge=1, le=24)
    # Approved story text, one entry per page; skips story generation when present
    pages: Optional[List[str]] = None
    blurb: Optional[str] = None
    dedication: Optional[str] = None
    uploads: List[UploadRef] = Field(default_factory=list)
    text_config: Dict[str, Any] = Field(default_factory=dict)
    bleed_percent: float = Field(3.5, ge=0, lt=100)
    vision_overlay: bool = True

    @field_validator("pages")
    @classmethod
    def pages_not_blank(cls, v):
        if v is None:
            return v
        cleaned = [p.strip() for p in v if p and p.strip()]
        if not cleaned:
            raise ValueError("pages must contain at least one non-empty page")
        if len(cleaned) > 24:
            raise ValueError("a book holds at most 24 story pages")
        return cleaned

class StoryAccepted(BaseModel):
    story_id: str
    status_url: str
    worker_url: str

class StageSummary(BaseModel):
    status: str
    attempts: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error: Optional[str] = None

class StoryStatus(BaseModel):
    story_id: str
    status: str
    current_stage: str
    cancelled: bool = False
    last_error: Optional[Dict[str, Any]] = None
    stages: Dict[str, StageSummary] = Field(default_factory=dict)
    final: Optional[Dict[str, Any]] = None
