from datetime import datetime

from pydantic import BaseModel, Field


class PlanResponse(BaseModel):
    id: str
    name: str
    price: float
    currency: str
    duration_type: str
    duration_value: int
    analysis_limit: int
    is_popular: bool = False
    is_active: bool = True

    model_config = {"from_attributes": True}


class SubscriptionResponse(BaseModel):
    id: int | None = None
    plan: str
    status: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    analysis_limit: int = 0
    analysis_used: int = 0
    plan_details: PlanResponse | None = None


class UpgradeRequest(BaseModel):
    plan: str = Field(min_length=1)
