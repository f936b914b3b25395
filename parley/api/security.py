"""Request signature verification for inbound platform calls."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from parley.platform.slack import verify_slack_signature


async def verify_request_signature(
    request: Request,
    x_slack_request_timestamp: str = Header("", alias="X-Slack-Request-Timestamp"),
    x_slack_signature: str = Header("", alias="X-Slack-Signature"),
) -> None:
    """FastAPI dependency; a no-op when no signing secret is configured."""
    secret = request.app.state.settings.slack_signing_secret
    if not secret:
        return
    body = await request.body()
    if not verify_slack_signature(secret, x_slack_request_timestamp, body, x_slack_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid request signature",
        )
