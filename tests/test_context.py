"""Tests for conversation context assembly."""

from datetime import datetime, timedelta, timezone

from conftest import FakeContextSource, msg

from parley.context import ContextAssembler, ContextRequest

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _assembler(source):
    return ContextAssembler(source, clock=lambda: NOW)


async def test_thread_parent_with_replies_returns_all_in_order():
    thread = [
        msg("1700000000.000100", "Can someone review the deploy plan?", "U1"),
        msg("1700000050.000200", "Looking now", "U2"),
        msg("1700000020.000300", "I'll check the rollback step", "U3"),
        msg("1700000090.000400", "Plan looks fine to me", "U4"),
    ]
    source = FakeContextSource(threads={"1700000000.000100": thread})
    request = ContextRequest(channel_ref="C1", message_ref="1700000000.000100")

    messages = await _assembler(source).assemble(request)

    assert len(messages) == 4
    assert [m.timestamp for m in messages] == sorted(m.timestamp for m in thread)
    assert messages[0].text == "Can someone review the deploy plan?"
    assert source.history_calls == []


async def test_reply_inside_thread_uses_thread_ref():
    thread = [msg("100.0", "parent"), msg("101.0", "reply")]
    source = FakeContextSource(threads={"100.0": thread})
    request = ContextRequest(channel_ref="C1", message_ref="101.0", thread_ref="100.0")

    messages = await _assembler(source).assemble(request)

    assert [m.text for m in messages] == ["parent", "reply"]
    # No lookup needed when the trigger is already inside a thread.
    assert source.thread_calls == [("C1", "100.0", 20)]


async def test_channel_window_used_when_not_a_thread():
    history = [msg("300.0", "third"), msg("100.0", "first"), msg("200.0", "second")]
    source = FakeContextSource(history=history)
    request = ContextRequest(channel_ref="C1", message_ref="300.0", window_minutes=30)

    messages = await _assembler(source).assemble(request)

    assert [m.text for m in messages] == ["first", "second", "third"]
    channel, oldest, limit = source.history_calls[0]
    assert channel == "C1"
    assert oldest == (NOW - timedelta(minutes=30)).timestamp()
    assert limit == 20


async def test_bots_and_blank_messages_are_dropped():
    history = [
        msg("1.0", "hello"),
        msg("2.0", "deploy finished", author="B1", human=False),
        msg("3.0", "   "),
        msg("4.0", "thanks"),
    ]
    source = FakeContextSource(history=history)

    messages = await _assembler(source).assemble(ContextRequest("C1", "4.0"))

    assert [m.text for m in messages] == ["hello", "thanks"]


async def test_max_messages_keeps_most_recent():
    history = [msg(f"{i}.0", f"m{i}") for i in range(1, 11)]
    source = FakeContextSource(history=history)

    messages = await _assembler(source).assemble(ContextRequest("C1", "10.0", max_messages=3))

    assert len(messages) <= 3
    assert all(m.is_human for m in messages)


async def test_upstream_failure_yields_empty_context():
    source = FakeContextSource(fail=True)

    messages = await _assembler(source).assemble(ContextRequest("C1", "1.0"))

    assert messages == []
