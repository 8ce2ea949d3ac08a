"""Request/reply correlation tests."""

import asyncio
import gc
import json

import pytest
from conftest import wait_until

from turntracker.channel import Channel
from turntracker.correlator import Correlator, WaitSpec
from turntracker.exceptions import (
    ChannelDestroyedError,
    RequestTimeoutError,
    ServerError,
    TransportError,
)
from turntracker.protocol import ClientMsg, MsgType, ServerMsg


async def open_correlator(config, connector, **kwargs):
    channel = Channel(config=config, connector=connector)
    correlator = Correlator(channel, **kwargs)
    await channel.connect()
    return channel, correlator


def joined(room_id: str, client_id: str = "c1") -> str:
    return ServerMsg.room_joined(room_id, client_id, []).to_json()


JOIN_WAIT = WaitSpec(MsgType.ROOM_JOINED, lambda data: data.get("room_id") == "AB12CD")


class TestSendAndWait:
    @pytest.mark.asyncio
    async def test_resolves_on_matching_reply(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.join_room("AB12CD"), JOIN_WAIT)
        )
        await wait_until(lambda: connector.socket.sent)
        channel._dispatch(joined("AB12CD"))
        reply = await call
        assert reply.type == "room_joined"
        assert reply.data["room_id"] == "AB12CD"
        assert correlator.pending_count == 0
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_wait_registered_before_send(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        original_send = connector.socket.send

        async def send_and_reply_immediately(raw):
            await original_send(raw)
            # reply lands before send() returns to the caller
            channel._dispatch(joined("AB12CD"))

        connector.socket.send = send_and_reply_immediately
        reply = await correlator.send_and_wait(ClientMsg.join_room("AB12CD"), JOIN_WAIT)
        assert reply.data["room_id"] == "AB12CD"
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_predicate_miss_keeps_waiting(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.join_room("AB12CD"), JOIN_WAIT)
        )
        await wait_until(lambda: connector.socket.sent)
        channel._dispatch(joined("ZZZZZZ"))
        await asyncio.sleep(0)
        assert not call.done()
        channel._dispatch(joined("AB12CD"))
        assert (await call).data["room_id"] == "AB12CD"
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_unrelated_type_does_not_resolve(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(correlator.send_and_wait(
            ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED)
        ))
        await wait_until(lambda: connector.socket.sent)
        channel._dispatch(joined("AB12CD"))
        channel._dispatch(ServerMsg.player_left("AB12CD", "c2").to_json())
        await asyncio.sleep(0)
        assert not call.done()
        channel._dispatch(ServerMsg.room_created("AB12CD", "c1", []).to_json())
        assert (await call).type == "room_created"
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_server_error_rejects(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.join_room("AB12CD"), JOIN_WAIT)
        )
        await wait_until(lambda: connector.socket.sent)
        channel._dispatch(ServerMsg.error("Room not found").to_json())
        with pytest.raises(ServerError, match="Room not found"):
            await call
        assert correlator.pending_count == 0
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_error_without_message(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        wait = correlator.wait_for(MsgType.ROOM_CREATED)
        channel._dispatch('{"type": "error", "data": {}}')
        with pytest.raises(ServerError, match="Server error"):
            await wait.future
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_timeout_names_type_and_ignores_late_reply(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        with pytest.raises(RequestTimeoutError) as excinfo:
            await correlator.send_and_wait(
                ClientMsg.join_room("AB12CD"), JOIN_WAIT, timeout=0.05
            )
        assert "room_joined" in str(excinfo.value)
        assert excinfo.value.timeout == 0.05
        assert correlator.pending_count == 0
        # a late reply has no one left to resolve
        channel._dispatch(joined("AB12CD"))
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        assert correlator.timeout == config.request_timeout
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_send_failure_removes_wait(self, config, connector):
        channel = Channel(config=config, connector=connector)
        correlator = Correlator(channel)
        connector.fail = True
        with pytest.raises(TransportError):
            await correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
        assert correlator.pending_count == 0
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_error_during_failing_send_is_not_left_unretrieved(self, config, connector):
        loop = asyncio.get_running_loop()
        unhandled = []
        loop.set_exception_handler(lambda _loop, context: unhandled.append(context))
        try:
            connector.gate = asyncio.Event()
            channel = Channel(config=config, connector=connector)
            correlator = Correlator(channel)
            call = asyncio.ensure_future(
                correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
            )
            await wait_until(lambda: connector.urls)
            channel._dispatch(ServerMsg.error("Room full").to_json())
            connector.fail = True
            connector.gate.set()
            with pytest.raises(TransportError):
                await call
            await channel.destroy()
            del call
            gc.collect()
            assert not [c for c in unhandled if "never retrieved" in c.get("message", "")]
        finally:
            loop.set_exception_handler(None)

    @pytest.mark.asyncio
    async def test_cancelled_caller_removes_wait(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
        )
        await wait_until(lambda: correlator.pending_count == 1 and connector.socket.sent)
        call.cancel()
        with pytest.raises(asyncio.CancelledError):
            await call
        assert correlator.pending_count == 0
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_destroy_rejects_pending(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
        )
        await wait_until(lambda: connector.socket.sent)
        await channel.destroy()
        with pytest.raises(ChannelDestroyedError):
            await call


class TestMultipleWaits:
    @pytest.mark.asyncio
    async def test_one_reply_satisfies_one_wait(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        first = correlator.wait_for(MsgType.ROOM_CREATED)
        second = correlator.wait_for(MsgType.ROOM_CREATED)
        channel._dispatch(ServerMsg.room_created("AAAAAA", "c1", []).to_json())
        assert first.future.done()
        assert not second.future.done()
        channel._dispatch(ServerMsg.room_created("BBBBBB", "c1", []).to_json())
        assert (await second.future).data["room_id"] == "BBBBBB"
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_first_accepting_predicate_wins(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        picky = correlator.wait_for(MsgType.ROOM_JOINED, lambda d: d["room_id"] == "BBBBBB")
        any_room = correlator.wait_for(MsgType.ROOM_JOINED)
        channel._dispatch(joined("AAAAAA"))
        assert any_room.future.done()
        assert not picky.future.done()
        channel._dispatch(joined("BBBBBB"))
        assert picky.future.done()
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_resolution_follows_arrival_order(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        created = correlator.wait_for(MsgType.ROOM_CREATED)
        joined_wait = correlator.wait_for(MsgType.ROOM_JOINED)
        channel._dispatch(joined("AB12CD"))
        assert joined_wait.future.done()
        assert not created.future.done()
        created.future.cancel()
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_raising_predicate_counts_as_miss(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        wait = correlator.wait_for(MsgType.ROOM_JOINED, lambda d: d["missing"])
        channel._dispatch(joined("AB12CD"))
        assert not wait.future.done()
        assert correlator.pending_count == 1
        correlator.cancel_all(ChannelDestroyedError())
        with pytest.raises(ChannelDestroyedError):
            await wait.future
        await channel.destroy()


class TestRequestIds:
    @pytest.mark.asyncio
    async def test_request_id_sent_and_matched(self, config, connector):
        channel, correlator = await open_correlator(config, connector, send_request_ids=True)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
        )
        await wait_until(lambda: connector.socket.sent)
        request_id = json.loads(connector.socket.sent[0])["request_id"]
        assert request_id

        other = ServerMsg.room_created("AAAAAA", "c1", [])
        other.request_id = "someone-else"
        channel._dispatch(other.to_json())
        await asyncio.sleep(0)
        assert not call.done()

        mine = ServerMsg.room_created("BBBBBB", "c1", [])
        mine.request_id = request_id
        channel._dispatch(mine.to_json())
        assert (await call).data["room_id"] == "BBBBBB"
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_reply_without_request_id_falls_back_to_type(self, config, connector):
        channel, correlator = await open_correlator(config, connector, send_request_ids=True)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
        )
        await wait_until(lambda: connector.socket.sent)
        channel._dispatch(ServerMsg.room_created("AAAAAA", "c1", []).to_json())
        assert (await call).data["room_id"] == "AAAAAA"
        await channel.destroy()

    @pytest.mark.asyncio
    async def test_no_request_id_by_default(self, config, connector):
        channel, correlator = await open_correlator(config, connector)
        call = asyncio.ensure_future(
            correlator.send_and_wait(ClientMsg.create_room(), WaitSpec(MsgType.ROOM_CREATED))
        )
        await wait_until(lambda: connector.socket.sent)
        assert "request_id" not in json.loads(connector.socket.sent[0])
        channel._dispatch(ServerMsg.room_created("AAAAAA", "c1", []).to_json())
        await call
        await channel.destroy()
