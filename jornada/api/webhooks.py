"""
Inbound chat webhooks (Z-API).

Transport failures (bad secret, unknown instance, wrong method) answer in plain
text because the provider's retry logic keys on them; everything else is the
structured `{ok, error, detail}` body.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.exceptions import AuthenticationError, NotFoundError, error_body
from jornada.db.session import get_db
from jornada.schemas.webhook import InboundAck
from jornada.services.inbound_router import InboundRouter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks/zapi", tags=["webhooks"])

SECRET_HEADERS = ("x-webhook-secret", "x-byfrost-webhook-secret")


def _provided_secret(request: Request):
    for header in SECRET_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return request.query_params.get("secret")


@router.post("/inbound", response_model=InboundAck, response_model_exclude_none=True)
async def zapi_inbound(request: Request, session: AsyncSession = Depends(get_db)) -> Any:
    """Route one provider callback to its tenant, vendor, journey and case."""
    try:
        payload: Dict[str, Any] = await request.json()
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body("invalid_json"))
    if not isinstance(payload, dict):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body("invalid_json"))

    svc = InboundRouter()
    try:
        result = await svc.route(session, payload, _provided_secret(request))
    except AuthenticationError:
        return PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)
    except NotFoundError as exc:
        logger.warning("Inbound for unknown instance: %s", exc.details.get("instance_id"))
        return PlainTextResponse("Instance not found", status_code=status.HTTP_404_NOT_FOUND)

    await session.commit()
    return result


@router.api_route("/inbound", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def zapi_inbound_method_not_allowed() -> PlainTextResponse:
    return PlainTextResponse("Method not allowed", status_code=status.HTTP_405_METHOD_NOT_ALLOWED)
