from pydantic import BaseModel, Field


class CountRequest(BaseModel):
    imageDataUrl: str
    notes: str | None = None


class CountItem(BaseModel):
    label: str
    center_x: float
    center_y: float
    confidence: float
    notes: str | None = None


class CountResponse(BaseModel):
    count: int
    items: list[CountItem] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str


class BoundingBox(BaseModel):
    xmin: float
    ymin: float
    xmax: float
    ymax: float


class UpstreamDetection(BaseModel):
    label: str | None = None
    score: float
    box: BoundingBox
