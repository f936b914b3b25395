"""Shared fakes for pipeline tests."""

import asyncio
import json
from typing import Optional

from parley.delivery.adapter import Recipient
from parley.delivery.controls import Control
from parley.llm.client import LLMResponse
from parley.models.conversation import ConversationMessage

SENTIMENT_JSON = json.dumps(
    {"tone": "frustrated", "confidence": 0.8, "indicators": ["still broken"], "risk_level": "high"}
)
TOPIC_JSON = json.dumps({"topic": "technical", "confidence": 0.9, "reasoning": "bug report"})


def msg(ts: str, text: str, author: str = "U1", human: bool = True) -> ConversationMessage:
    return ConversationMessage(author_id=author, text=text, timestamp=ts, is_human=human)


class FakeContextSource:
    def __init__(self, history=None, threads=None, fail: bool = False) -> None:
        self.history = list(history or [])
        self.threads = dict(threads or {})
        self.fail = fail
        self.history_calls: list[tuple] = []
        self.thread_calls: list[tuple] = []

    async def fetch_history(self, channel_ref, oldest, limit):
        self.history_calls.append((channel_ref, oldest, limit))
        if self.fail:
            raise ConnectionError("history unavailable")
        return self.history[:limit]

    async def fetch_thread(self, channel_ref, thread_ref, limit, oldest=None):
        self.thread_calls.append((channel_ref, thread_ref, limit))
        if self.fail:
            raise ConnectionError("thread unavailable")
        return self.threads.get(thread_ref, [])[:limit]


class FakeSettingsSource:
    def __init__(self, org=None, user=None, mode=None, fail: bool = False) -> None:
        self.org = org
        self.user = user
        self.mode = mode
        self.fail = fail

    async def get_org_style(self, org_id):
        if self.fail:
            raise RuntimeError("settings store down")
        return self.org

    async def get_user_style(self, org_id, subject_id):
        return self.user

    async def get_precedence_mode(self, org_id):
        return self.mode


def default_responder(prompt: str) -> str:
    if "emotional tone" in prompt:
        return SENTIMENT_JSON
    return TOPIC_JSON


class FakeModelClient:
    """Streams scripted deltas and answers classifier prompts."""

    def __init__(
        self,
        deltas=None,
        *,
        responder=default_responder,
        delay: float = 0.0,
        complete_delay: float = 0.0,
        stream_error: Optional[Exception] = None,
        complete_error: Optional[Exception] = None,
        model: str = "claude-sonnet-4-5-20250929",
    ) -> None:
        self.model = model
        self.deltas = list(deltas if deltas is not None else ["Sure, ", "I'll take ", "a look today."])
        self.responder = responder
        self.delay = delay
        self.complete_delay = complete_delay
        self.stream_error = stream_error
        self.complete_error = complete_error
        self.stream_calls = 0
        self.complete_calls = 0
        self.last_system = ""
        self.last_messages: list = []
        self.closed = False

    async def stream_completion(self, system_prompt, messages, *, max_tokens=1024, usage=None):
        self.stream_calls += 1
        self.last_system = system_prompt
        self.last_messages = messages
        try:
            for delta in self.deltas:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield delta
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.closed = True
        if usage is not None:
            usage.input_tokens = 120
            usage.output_tokens = 30

    async def complete(self, system_prompt, messages, max_tokens=256):
        self.complete_calls += 1
        if self.complete_delay:
            await asyncio.sleep(self.complete_delay)
        if self.complete_error is not None:
            raise self.complete_error
        return LLMResponse(content=self.responder(messages[0]["content"]), model=self.model)


class FakeRender:
    def __init__(self, target: "FakeDeliveryTarget") -> None:
        self._target = target
        self.appended: list[str] = []
        self.finalized: Optional[tuple] = None
        self.aborted = False

    async def append(self, text):
        if self._target.fail_append:
            raise ConnectionError("append failed")
        self.appended.append(text)

    async def finalize(self, controls, footer=""):
        if self._target.fail_finalize:
            raise ConnectionError("finalize failed")
        self.finalized = (list(controls), footer)

    async def abort(self):
        self.aborted = True


class FakeDeliveryTarget:
    def __init__(
        self,
        *,
        progressive: bool = True,
        fail_append: bool = False,
        fail_finalize: bool = False,
        fail_direct: bool = False,
        fail_as_user: bool = False,
    ) -> None:
        self.progressive = progressive
        self.fail_append = fail_append
        self.fail_finalize = fail_finalize
        self.fail_direct = fail_direct
        self.fail_as_user = fail_as_user
        self.renders: list[FakeRender] = []
        self.direct: list[tuple[Recipient, str, list[Control], str]] = []
        self.as_user: list[tuple[Recipient, str]] = []

    async def render_progressive(self, recipient, correlation_id):
        if not self.progressive:
            raise ConnectionError("progressive rendering unavailable")
        render = FakeRender(self)
        self.renders.append(render)
        return render

    async def post_direct(self, recipient, text, controls, footer=""):
        if self.fail_direct:
            raise ConnectionError("direct post failed")
        self.direct.append((recipient, text, list(controls), footer))

    async def post_as_user(self, recipient, text):
        if self.fail_as_user:
            raise ConnectionError("post as user failed")
        self.as_user.append((recipient, text))

    @property
    def rendered_text(self) -> str:
        return "".join("".join(r.appended) for r in self.renders)

