import asyncio

import pytest

from mcpwire.errors import SendEOFError, SessionClosedError
from mcpwire.session.state import SessionState


def test_new_state_flags_are_clear():
    state = SessionState()
    assert (state.received_init_request, state.ready, state.closed) == (False, False, False)


def test_mark_flags():
    state = SessionState()
    state.mark_received_init_request()
    state.mark_ready()
    assert (state.received_init_request, state.ready) == (True, True)


def test_request_ids_start_at_one_and_increase():
    state = SessionState()
    ids = [state.next_request_id() for _ in range(5)]
    assert ids[0] == 1
    assert ids[1:] == [value + 1 for value in ids[:-1]]


def test_touch_moves_last_active_forward():
    state = SessionState()
    state.last_active_at = 0.0
    state.touch()
    assert state.last_active_at > 0.0


def test_set_client_info():
    state = SessionState()
    info = {"name": "Example MCP Client", "version": "1.0.0"}
    capabilities = {"roots": {"listChanged": True}}
    state.set_client_info(info, capabilities)
    assert (state.client_info, state.client_capabilities) == (info, capabilities)


def test_close_is_idempotent():
    state = SessionState()
    state.close()
    state.close()
    assert state.closed is True


@pytest.mark.asyncio
async def test_messages_come_out_in_order():
    state = SessionState()
    messages = [b"a", b"b", b"c"]
    for message in messages:
        await state.send_message(message)
    received = [await state.get_message_for_send() for _ in messages]
    assert received == messages


@pytest.mark.asyncio
async def test_send_after_close_raises():
    state = SessionState()
    state.close()
    with pytest.raises(SessionClosedError):
        await state.send_message(b"late")


@pytest.mark.asyncio
async def test_buffered_messages_survive_close_then_eof():
    state = SessionState()
    await state.send_message(b"first")
    state.close()
    assert await state.get_message_for_send() == b"first"
    with pytest.raises(SendEOFError):
        await state.get_message_for_send()


@pytest.mark.asyncio
async def test_waiting_reader_sees_eof_on_close():
    state = SessionState()
    reader = asyncio.create_task(state.get_message_for_send())
    await asyncio.sleep(0)
    assert state.closed is False
    state.close()
    (outcome,) = await asyncio.wait_for(asyncio.gather(reader, return_exceptions=True), 1.0)
    assert isinstance(outcome, SendEOFError)
    assert state.closed is True


@pytest.mark.asyncio
async def test_waiting_reader_gets_message():
    state = SessionState()
    reader = asyncio.create_task(state.get_message_for_send())
    await asyncio.sleep(0)
    await state.send_message(b"hello")
    assert await asyncio.wait_for(reader, 1.0) == b"hello"


@pytest.mark.asyncio
async def test_full_queue_blocks_sender():
    state = SessionState(queue_size=1)
    await state.send_message(b"x")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(state.send_message(b"y"), 0.05)
    assert await state.get_message_for_send() == b"x"
    await state.send_message(b"y")
    assert await state.get_message_for_send() == b"y"


@pytest.mark.asyncio
async def test_blocked_sender_fails_on_close():
    state = SessionState(queue_size=1)
    await state.send_message(b"x")
    sender = asyncio.create_task(state.send_message(b"y"))
    await asyncio.sleep(0)
    state.close()
    with pytest.raises(SessionClosedError):
        await asyncio.wait_for(sender, 1.0)
    assert await state.get_message_for_send() == b"x"