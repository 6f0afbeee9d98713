"""Webhook receiver — FastAPI endpoint for Linear webhook delivery.

Verifies the HMAC-SHA256 signature over the raw body before any parsing,
then hands the payload to the controller and answers immediately. Linear
expects a fast response; agent runs continue in the background.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from linear_agent.errors import MalformedPayloadError
from linear_agent.linear_client import verify_signature
from linear_agent.models import WebhookPayload

if TYPE_CHECKING:
    from linear_agent.controller import AgentController

logger = logging.getLogger(__name__)

router = APIRouter()

# Set during server startup (see server.py)
_controller: AgentController | None = None
_webhook_secret: str = ""


def configure(controller: AgentController, webhook_secret: str) -> None:
    """Wire the webhook endpoint to the controller and signing secret."""
    global _controller, _webhook_secret
    _controller = controller
    _webhook_secret = webhook_secret


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    linear_signature: str = Header(default=""),
) -> JSONResponse:
    """Receive one Linear webhook delivery.

    1. Signature verification (401 on mismatch)
    2. Parse + shape validation (400 on failure)
    3. Classify, guard and dispatch via the controller
    """
    body = await request.body()

    if not verify_signature(body, linear_signature, _webhook_secret):
        logger.warning("Invalid webhook signature (%d bytes)", len(body))
        return _error(401, "Invalid signature")

    try:
        payload = WebhookPayload.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON")
        return _error(400, "Invalid JSON")
    except ValidationError as e:
        logger.warning("Webhook payload failed validation: %d error(s)", e.error_count())
        return _error(400, "Invalid payload")

    if _controller is None:
        logger.error("Controller not configured, dropping %s/%s", payload.type, payload.action)
        return _error(503, "Not ready")

    try:
        result = await _controller.handle(payload)
    except MalformedPayloadError as e:
        logger.warning("Malformed %s/%s webhook: %s", payload.type, payload.action, e)
        return _error(400, str(e))

    return JSONResponse(status_code=200, content=result)
