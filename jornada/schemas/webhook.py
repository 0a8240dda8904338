from typing import Optional
from pydantic import BaseModel, ConfigDict


class InboundAck(BaseModel):
    """Success body of the inbound webhook."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ok": True,
                "correlation_id": "1f0e5c2a-8a51-4d5e-9f1e-0b7f3f7f2a11",
                "case_id": 42,
                "journey_id": 1,
            }
        }
    )

    ok: bool = True
    correlation_id: str
    case_id: Optional[int] = None
    journey_id: Optional[int] = None
    note: Optional[str] = None
