from datetime import date, datetime

from pydantic import BaseModel


class ExecutionSourceResponse(BaseModel):
    domain: str
    url: str
    category: str
    page_type: str
    citations: int
    associated_brands: list[str] | None

    model_config = {"from_attributes": True}


class ExecutionResponse(BaseModel):
    id: int
    prompt_id: int
    platform_id: int
    execution_date: date
    status: str  # pending | running | completed | failed
    result: str | None
    error_message: str | None
    brand_mentions: int | None
    competitors_mentioned: list[str] | None
    mention_analysis: dict | None
    analysis_confidence: float | None
    business_visibility: int | None
    competitor_visibilities: dict[str, int] | None
    share_of_voice: float | None
    competitor_share_of_voice: dict[str, float] | None
    total_tokens: int | None
    started_at: datetime | None
    completed_at: datetime | None
    sources: list[ExecutionSourceResponse] = []

    model_config = {"from_attributes": True}


class ExecutionListResponse(BaseModel):
    items: list[ExecutionResponse]
    total: int


class RunAcceptedResponse(BaseModel):
    business_id: int
    prompt_id: int | None = None
    platform_id: int | None = None
    status: str = "accepted"


class ReanalysisAcceptedResponse(BaseModel):
    business_id: int
    force_all: bool
    task_id: str
