"""
Errand Routes for Errand Bot
============================

Endpoints for submitting errands, following their status, and receiving
telephony callbacks.

Endpoints:
----------
- POST /errands: Submit a natural-language errand and a callback phone
- GET /errands/{task_id}/status: Current task record (bearer token required)
- POST /errands/provider-callback?taskId=...: Twilio speech/digits/status callbacks

Submission Responses:
---------------------
- 202 {message, taskId, initialStatus, placeName}: a call was placed; follow
  the task over the /ws socket
- 200 {message, taskId, status: "Completed", places}: no call was needed
- 4xx/5xx {status: "error", statusCode, message, taskId?}: the step that
  failed; the same message is the task's recorded error

Rate Limiting:
--------------
Submissions are limited per client IP (RATE_LIMIT_ERRANDS) because every
accepted errand can place a real phone call.

Callbacks:
----------
The callback always answers 200 with TwiML (an empty <Response/> when there
is nothing to say) so Twilio does not retry. When an auth token is configured
the X-Twilio-Signature header is checked first and a bad signature gets 403.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.responses import Response

from .. import config
from ..auth import optional_user_id, require_user_id
from ..config import get_rate_limit_errands
from ..errors import NotFoundCondition
from ..schemas import ErrandAccepted, ErrandRequest, decode_callback
from ..services import ErrandServices, get_services
from ..telephony import empty_twiml

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/errands", tags=["Errands"])

limiter = Limiter(key_func=get_remote_address, enabled=config.RATE_LIMIT_ENABLED)


def _twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


@router.post("", status_code=202)
@limiter.limit(get_rate_limit_errands)
async def submit_errand(
    request: Request,
    body: ErrandRequest,
    user_id: Optional[int] = Depends(optional_user_id),
    services: ErrandServices = Depends(get_services),
) -> JSONResponse:
    """Create an errand task and drive it until a call is placed or no call is needed."""
    outcome = await services.flow.run(body, user_id=user_id)
    status_code = 202 if isinstance(outcome, ErrandAccepted) else 200
    return JSONResponse(status_code=status_code, content=outcome.model_dump(mode="json", by_alias=True))


@router.get("/{task_id}/status")
async def errand_status(
    task_id: str,
    user_id: int = Depends(require_user_id),
    services: ErrandServices = Depends(get_services),
):
    """Return the current record of a task."""
    record = await services.state_machine.get(task_id)
    # Tasks submitted by a signed-in user are only visible to that user
    if record is None or (record.user_id is not None and record.user_id != user_id):
        raise NotFoundCondition("Task not found")
    return record.to_wire()


def _public_url(request: Request, base_url: str) -> str:
    """The URL Twilio signed: BASE_URL + path + query when behind a proxy."""
    if not base_url:
        return str(request.url)
    url = f"{base_url}{request.url.path}"
    if request.url.query:
        url += f"?{request.url.query}"
    return url


@router.post("/provider-callback")
async def provider_callback(
    request: Request,
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    services: ErrandServices = Depends(get_services),
) -> Response:
    """Receive a Twilio callback for a task and answer with TwiML."""
    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}

    telephony = services.telephony
    if services.validate_signatures and telephony.auth_token:
        signature = request.headers.get("X-Twilio-Signature")
        if not telephony.validate_signature(_public_url(request, telephony.base_url), params, signature):
            logger.warning("[%s] Rejected callback with invalid Twilio signature", task_id)
            raise HTTPException(status_code=403, detail="Invalid Twilio signature")

    if not task_id:
        logger.warning("Callback without taskId ignored")
        return _twiml_response(empty_twiml())

    event = decode_callback(task_id, params)
    twiml = await services.reconciler.handle(event)
    return _twiml_response(twiml)
