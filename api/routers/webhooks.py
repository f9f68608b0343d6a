"""GitHub webhook endpoint for the Strata API."""

import json
from typing import Any

import structlog
from fastapi import APIRouter, Header, HTTPException, Request, status

from api.dependencies import GitHubClientDep, WebhookProcessorDep
from integrations.github import WebhookPayloadError, WebhookResult

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/github",
    response_model=WebhookResult,
    summary="Receive a GitHub webhook",
    responses={
        status.HTTP_401_UNAUTHORIZED: {"description": "Invalid signature"},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"description": "Invalid payload"},
    },
)
async def github_webhook(
    request: Request,
    client: GitHubClientDep,
    processor: WebhookProcessorDep,
    x_github_event: str = Header(..., alias="X-GitHub-Event"),
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> WebhookResult:
    """Verify, parse and route a GitHub webhook delivery.

    Raises:
        HTTPException: 401 for a bad signature, 422 for a malformed body.
    """
    body = await request.body()
    if not client.verify_webhook_signature(body, x_hub_signature_256):
        logger.warning("Webhook signature rejected", event_type=x_github_event)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        payload: Any = json.loads(body)
    except json.JSONDecodeError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid JSON body: {e}",
        ) from e
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Webhook body must be a JSON object",
        )

    try:
        return await processor.process(x_github_event, payload)
    except WebhookPayloadError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
