"""
Explicit governance calls.

govern() is the manual escape hatch: agent code asks the platform whether
an action is permitted before doing it. report() closes the audit loop
after a governed tool has run on the server side.

Usage:
    decision = await govern(session, GovernRequest(
        action="send_email",
        context={"to": "user@example.com"},
    ))
    if not decision.permitted:
        logger.info(f"Blocked: {decision.reason}")
"""

import logging

from ..api.models import ConfirmBody, GovernBody, GovernResponse, ReportResponse
from .client import TokenSession
from .models import Decision, GovernRequest, ReportRequest

logger = logging.getLogger(__name__)

GOVERN_PATH = "/v1/govern"
CONFIRM_PATH = "/v1/confirm"


async def govern(session: TokenSession, request: GovernRequest) -> Decision:
    """
    Ask the platform for a decision on one action.

    Raises whatever TokenSession.request raises; a reply that does not
    match the expected shape raises pydantic.ValidationError.
    """
    body = GovernBody(
        action=request.action,
        context=request.context,
        blocking=request.blocking,
    )
    data = await session.request("POST", GOVERN_PATH, body.model_dump())
    response = GovernResponse.model_validate(data)
    logger.debug(
        f"Decision {response.decision_id} for {request.action}: "
        f"permitted={response.permitted}"
    )
    return Decision(
        permitted=response.permitted,
        reason=response.reason,
        decision_id=response.decision_id,
    )


async def report(session: TokenSession, request: ReportRequest) -> ReportResponse:
    """Report a tool execution outcome (POST /v1/confirm)."""
    body = ConfirmBody(
        event_id=request.event_id,
        result=request.result,
        metadata=request.metadata,
    )
    data = await session.request("POST", CONFIRM_PATH, body.model_dump())
    response = ReportResponse.model_validate(data)
    if not response.acknowledged:
        logger.warning(f"Report for event {request.event_id} was not acknowledged")
    return response
