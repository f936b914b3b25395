"""Slack Web API adapter.

Implements :class:`~parley.context.ContextSource` and
:class:`~parley.delivery.DeliveryTarget` over plain HTTPS calls.  Only the
handful of methods the pipeline needs are covered.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any, Optional

import httpx
import structlog

from parley.delivery.adapter import Recipient
from parley.delivery.controls import REFINE_ACTION, REFINE_INPUT_ACTION, REFINE_INPUT_BLOCK, Control
from parley.models.conversation import ConversationMessage

logger = structlog.get_logger(__name__)

DEFAULT_API_BASE = "https://slack.com/api"

_NON_HUMAN_SUBTYPES = {"bot_message", "channel_join", "channel_leave", "channel_topic", "channel_purpose"}

SIGNATURE_VERSION = "v0"
SIGNATURE_TOLERANCE_SECONDS = 60 * 5


class SlackAPIError(Exception):
    """Slack answered with ``ok: false`` or a non-2xx status."""

    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"{method}: {error}")
        self.method = method
        self.error = error


# ---------------------------------------------------------------------------
# Request signing
# ---------------------------------------------------------------------------


def compute_slack_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Compute the ``v0=`` HMAC-SHA256 signature for a request body."""
    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    mac = hmac.new(secret.encode("utf-8"), base, hashlib.sha256)
    return f"{SIGNATURE_VERSION}={mac.hexdigest()}"


def verify_slack_signature(
    secret: str,
    timestamp: str,
    body: bytes,
    signature: str,
    now: Optional[float] = None,
) -> bool:
    """Return True if *signature* matches and *timestamp* is fresh."""
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    now = time.time() if now is None else now
    if abs(now - ts) > SIGNATURE_TOLERANCE_SECONDS:
        return False
    expected = compute_slack_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, signature or "")


# ---------------------------------------------------------------------------
# Block rendering
# ---------------------------------------------------------------------------


def _button(control: Control) -> dict:
    button: dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": control.label},
        "action_id": control.action_id,
        "value": control.value,
    }
    if control.style:
        button["style"] = control.style
    return button


def build_blocks(text: str, controls: list[Control], footer: str = "") -> list[dict]:
    blocks: list[dict] = []
    if text:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": text}})
    if any(c.action_id == REFINE_ACTION for c in controls):
        blocks.append(
            {
                "type": "input",
                "block_id": REFINE_INPUT_BLOCK,
                "optional": True,
                "label": {"type": "plain_text", "text": "How should it change?"},
                "element": {"type": "plain_text_input", "action_id": REFINE_INPUT_ACTION},
            }
        )
    if controls:
        blocks.append({"type": "actions", "elements": [_button(c) for c in controls]})
    if footer:
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"_{footer}_"}]})
    return blocks


def _to_message(raw: dict) -> ConversationMessage:
    is_human = not raw.get("bot_id") and raw.get("subtype") not in _NON_HUMAN_SUBTYPES
    return ConversationMessage(
        author_id=raw.get("user", "") or raw.get("bot_id", ""),
        text=raw.get("text", "") or "",
        timestamp=raw.get("ts", ""),
        is_human=is_human,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SlackStream:
    """A ``chat.startStream`` message being progressively filled."""

    def __init__(self, client: "SlackWebClient", channel: str, ts: str) -> None:
        self._client = client
        self.channel = channel
        self.ts = ts

    async def append(self, text: str) -> None:
        await self._client.call("chat.appendStream", {"channel": self.channel, "ts": self.ts, "markdown_text": text})

    async def finalize(self, controls: list[Control], footer: str = "") -> None:
        await self._client.call(
            "chat.stopStream",
            {"channel": self.channel, "ts": self.ts, "blocks": build_blocks("", controls, footer)},
        )

    async def abort(self) -> None:
        await self._client.call("chat.stopStream", {"channel": self.channel, "ts": self.ts})
        await self._client.call("chat.delete", {"channel": self.channel, "ts": self.ts})


class SlackWebClient:
    """Minimal async Slack Web API client.

    Parameters
    ----------
    token : str
        Bot token used for reads and private delivery.
    user_token : str | None
        Token used by :meth:`post_as_user`; falls back to *token*.
    """

    def __init__(
        self,
        token: str,
        *,
        user_token: Optional[str] = None,
        base_url: str = DEFAULT_API_BASE,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._token = token
        self._user_token = user_token or token
        self._base = base_url.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def call(
        self,
        method: str,
        payload: Optional[dict] = None,
        *,
        form: bool = False,
        token: Optional[str] = None,
    ) -> dict:
        """POST to ``<base>/<method>``; raise :class:`SlackAPIError` unless ok."""
        headers = {"Authorization": f"Bearer {token or self._token}"}
        url = f"{self._base}/{method}"
        try:
            if form:
                resp = await self._http.post(url, data=payload or {}, headers=headers)
            else:
                resp = await self._http.post(url, json=payload or {}, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SlackAPIError(method, str(exc)) from exc

        data = resp.json()
        if not data.get("ok"):
            raise SlackAPIError(method, data.get("error", "unknown_error"))
        return data

    # -- ContextSource -------------------------------------------------------

    async def fetch_history(self, channel_ref: str, oldest: float, limit: int) -> list[ConversationMessage]:
        data = await self.call(
            "conversations.history",
            {"channel": channel_ref, "oldest": f"{oldest:.6f}", "limit": str(limit)},
            form=True,
        )
        return [_to_message(m) for m in data.get("messages", [])]

    async def fetch_thread(
        self,
        channel_ref: str,
        thread_ref: str,
        limit: int,
        oldest: Optional[float] = None,
    ) -> list[ConversationMessage]:
        payload = {"channel": channel_ref, "ts": thread_ref, "limit": str(limit)}
        if oldest is not None:
            payload["oldest"] = f"{oldest:.6f}"
        data = await self.call("conversations.replies", payload, form=True)
        return [_to_message(m) for m in data.get("messages", [])]

    # -- DeliveryTarget ------------------------------------------------------

    async def render_progressive(self, recipient: Recipient, correlation_id: str) -> SlackStream:
        if not recipient.thread_ref:
            raise SlackAPIError("chat.startStream", "thread_required")
        data = await self.call(
            "chat.startStream",
            {
                "channel": recipient.channel_ref,
                "thread_ts": recipient.thread_ref,
                "recipient_user_id": recipient.subject_id,
            },
        )
        logger.debug("slack stream started", suggestion_id=correlation_id, ts=data.get("ts"))
        return SlackStream(self, recipient.channel_ref, data["ts"])

    async def post_direct(
        self,
        recipient: Recipient,
        text: str,
        controls: list[Control],
        footer: str = "",
    ) -> None:
        payload: dict[str, Any] = {
            "channel": recipient.channel_ref,
            "user": recipient.subject_id,
            "text": text,
            "blocks": build_blocks(text, controls, footer),
        }
        if recipient.thread_ref:
            payload["thread_ts"] = recipient.thread_ref
        await self.call("chat.postEphemeral", payload)

    async def post_as_user(self, recipient: Recipient, text: str) -> None:
        payload = {"channel": recipient.channel_ref, "text": text}
        if recipient.thread_ref:
            payload["thread_ts"] = recipient.thread_ref
        await self.call("chat.postMessage", payload, token=self._user_token)
