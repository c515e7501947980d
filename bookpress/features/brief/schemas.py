from typing import List, Optional
from pydantic import BaseModel, Field

class StoryProfile(BaseModel):
    child_name: Optional[str] = None
    child_age: Optional[int] = None
    reading_age: Optional[str] = None
    tone: str = "warm and playful"
    setting: str = ""
    themes: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    style: str = ""
