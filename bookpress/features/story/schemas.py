from typing import List
from pydantic import BaseModel, Field

class Scene(BaseModel):
    page: int = Field(..., ge=1)
    setting: str = ""
    characters: List[str] = Field(default_factory=list)
    action: str = ""

class SceneBreakdown(BaseModel):
    scenes: List[Scene] = Field(default_factory=list)
