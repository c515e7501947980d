from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class VendorOrder(BaseModel):
    external_id: str
    title: str
    interior_pdf_url: str
    cover_pdf_url: str
    page_count: int = Field(..., ge=2)
    spine_width_px: Optional[int] = None
    quantity: int = 1

class VendorOrderAck(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str = "received"

class VendorOrderStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    tracking_url: Optional[str] = None
    message: Optional[str] = None

class PartnerEvent(BaseModel):
    event: str                      # print.submitted | print.handoff | print.shipped
    story_id: str
    order_id: Optional[str] = None
    status: Optional[str] = None
    artifacts: dict = Field(default_factory=dict)
