"""Defence call HTTP endpoints.

``POST /defence`` opens a call on behalf of an external tool (the community's
map overlay). It goes through the same :class:`DefenceCallManager` as the
``/defence`` slash command and is rate limited per client address.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from bastion.api.deps import ManagerDep, enforce_rate_limit
from bastion.core.errors import CallRejected
from bastion.models.defence import CallRequest, Requester

logger = logging.getLogger(__name__)

router = APIRouter(tags=["defence"])

_STATUS_BY_REASON = {
    "time_required": 400,
    "invalid_time_format": 400,
    "unauthorized": 403,
    "config_missing": 500,
    "creation_failed": 500,
}


@router.post("/defence", dependencies=[Depends(enforce_rate_limit)])
async def create_defence(body: CallRequest, request: Request, manager: ManagerDep) -> JSONResponse:
    """Open a defence call in the configured community."""
    guild_id = request.app.state.settings.discord_guild_id
    try:
        outcome = await manager.create_call(guild_id, body, Requester(source="api"))
    except CallRejected as exc:
        message = exc.message
        if exc.reason == "config_missing":
            message = "Server configuration not found."
        logger.info("defence_api_rejected reason=%s", exc.reason)
        return JSONResponse(
            status_code=_STATUS_BY_REASON.get(exc.reason, 400),
            content={"message": f"❌ {message}"},
        )
    except Exception:  # Last-resort handler: callers get an apology, not a traceback
        logger.exception("defence_api_failed x=%d y=%d", body.x, body.y)
        return JSONResponse(
            status_code=500,
            content={"message": "❌ Something went wrong while creating the defence call."},
        )
    return JSONResponse(
        status_code=200,
        content={"message": f"✅ Created defence channel: {outcome.channel.name}"},
    )


@router.get("/defence/submissions")
async def list_submissions(manager: ManagerDep) -> dict:
    """Matched pledges for calls whose listener is still running."""
    entries = []
    for channel_id, submissions in manager.ledger.snapshot().items():
        if not submissions:
            continue
        latest = submissions[-1]
        entries.append(
            {
                "channelId": channel_id,
                "coordinates": latest.coordinates.model_dump(),
                "amount": latest.units,
                "time": latest.declared_time or "N/A",
                "type": latest.kind,
                "submittedBy": latest.display_name,
                "submittedAt": latest.submitted_at.isoformat(),
                "totalSubmissions": len(submissions),
            }
        )
    return {"totalChannels": len(entries), "submissions": entries}
