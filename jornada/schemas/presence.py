from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field


class ClockRequest(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {"tenantId": 1, "latitude": -23.5614, "longitude": -46.6559, "accuracyMeters": 12.5}
        },
    )

    tenant_id: int = Field(..., alias="tenantId")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, alias="accuracyMeters", ge=0)
    type: Optional[Literal["ENTRY", "BREAK_START", "BREAK_END", "EXIT"]] = None


class ClockResponse(BaseModel):
    ok: bool = True
    case_id: int
    case_date: str
    punch_id: int
    punch_type: str
    state: str
    within_radius: Optional[bool] = None
    distance_meters: Optional[float] = None
    flagged: bool = False
    reason: Optional[str] = None


class CloseDayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: int = Field(..., alias="tenantId")
    case_id: int = Field(..., alias="caseId")
    note: Optional[str] = Field(None, max_length=2000)


class CloseDayResponse(BaseModel):
    ok: bool = True
    case_id: int
    closed: bool
    state: str
    missing: Optional[str] = None
    worked_minutes: Optional[int] = None
    minutes_delta: Optional[int] = None
    balance_after: Optional[int] = None
