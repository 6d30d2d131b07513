"""Tests for the push channel listener."""

import asyncio
import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from printbridge.config import SharedConfig
from printbridge.exceptions import PushProtocolError
from printbridge.push import (
    CatchUpRequested,
    JobCreated,
    PushListener,
    push_url,
    sign_subscription,
)


def frame(event, data=None, **extra):
    return json.dumps({"event": event, "data": data, **extra})


@pytest.fixture
def queue():
    return asyncio.Queue()


@pytest.fixture
def ws():
    socket = MagicMock()
    socket.send_json = AsyncMock()
    return socket


@pytest.fixture
def listener(shared_config, queue):
    return PushListener(shared_config, queue)


def drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class TestHelpers:
    """Tests for URL building and subscription signing."""

    def test_sign_subscription(self):
        expected = hmac.new(b"secret", b"123.456:private-print_job.office", hashlib.sha256)
        auth = sign_subscription("key", "secret", "123.456", "private-print_job.office")
        assert auth == f"key:{expected.hexdigest()}"

    def test_push_url(self, bridge_config):
        url = push_url(bridge_config.model_copy(update={"push_port": 8080}))
        assert url.startswith("wss://push.test:8080/app/app-key?protocol=7")

        plain = push_url(bridge_config.model_copy(update={"push_use_tls": False}))
        assert plain.startswith("ws://push.test/app/app-key?")

    def test_push_url_requires_host(self, bridge_config):
        with pytest.raises(PushProtocolError):
            push_url(bridge_config.model_copy(update={"push_host": None}))


class TestHandleMessage:
    """Tests for protocol frame handling."""

    @pytest.mark.asyncio
    async def test_handshake_subscribes_with_signed_auth(self, listener, ws):
        data = json.dumps({"socket_id": "123.456", "activity_timeout": 30})

        await listener.handle_message(ws, frame("pusher:connection_established", data))

        channel = "private-print_job.office"
        ws.send_json.assert_awaited_once_with(
            {
                "event": "pusher:subscribe",
                "data": {
                    "channel": channel,
                    "auth": sign_subscription("app-key", "app-secret", "123.456", channel),
                },
            }
        )

    @pytest.mark.asyncio
    async def test_handshake_uses_remote_auth_endpoint(self, bridge_config, queue, ws, api):
        config = SharedConfig(
            bridge_config.model_copy(
                update={"push_auth_endpoint": "http://print.test/broadcasting/auth"}
            )
        )
        api.authorize_channel.return_value = "app-key:remote-signature"
        listener = PushListener(config, queue, api)

        await listener.handle_message(
            ws, frame("pusher:connection_established", {"socket_id": "1.2"})
        )

        api.authorize_channel.assert_awaited_once_with("1.2", "private-print_job.office")
        sent = ws.send_json.await_args.args[0]
        assert sent["data"]["auth"] == "app-key:remote-signature"

    @pytest.mark.asyncio
    async def test_handshake_without_socket_id_fails(self, listener, ws):
        with pytest.raises(PushProtocolError):
            await listener.handle_message(ws, frame("pusher:connection_established", "{}"))

    @pytest.mark.asyncio
    async def test_subscription_requests_catch_up(self, listener, ws, queue):
        await listener.handle_message(
            ws,
            frame(
                "pusher_internal:subscription_succeeded",
                "{}",
                channel="private-print_job.office",
            ),
        )
        assert drain(queue) == [CatchUpRequested()]

    @pytest.mark.asyncio
    async def test_job_events_are_forwarded(self, listener, ws, queue):
        await listener.handle_message(ws, frame("PrintJobCreated", '{"model": {"id": 20}}'))
        await listener.handle_message(ws, frame(".PrintJobCreated", {"model": {"id": 21}}))

        assert drain(queue) == [JobCreated(20), JobCreated(21)]

    @pytest.mark.asyncio
    async def test_malformed_frames_are_skipped(self, listener, ws, queue):
        await listener.handle_message(ws, "not json")
        await listener.handle_message(ws, "[1, 2]")
        await listener.handle_message(ws, frame("PrintJobCreated", '{"model": {}}'))
        await listener.handle_message(ws, frame("PrintJobCreated", "{broken"))
        await listener.handle_message(ws, frame("SomethingElse", {}))

        assert drain(queue) == []
        ws.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ping_is_answered(self, listener, ws):
        await listener.handle_message(ws, frame("pusher:ping", {}))
        ws.send_json.assert_awaited_once_with({"event": "pusher:pong", "data": {}})


class TestRun:
    """Tests for the reconnect loop."""

    @pytest.mark.asyncio
    async def test_reconnect_wait_ends_on_shutdown(self, bridge_config, queue):
        config = SharedConfig(bridge_config.model_copy(update={"push_reconnect_delay": 60}))
        listener = PushListener(config, queue)
        shutdown = asyncio.Event()

        with patch.object(
            listener,
            "_connect_and_listen",
            AsyncMock(side_effect=aiohttp.ClientConnectionError("refused")),
        ) as connect:
            task = asyncio.create_task(listener.run(shutdown))
            await asyncio.sleep(0.05)
            shutdown.set()
            await asyncio.wait_for(task, timeout=1)

        connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reconnects_after_failure(self, bridge_config, queue):
        config = SharedConfig(bridge_config.model_copy(update={"push_reconnect_delay": 0.01}))
        listener = PushListener(config, queue)
        shutdown = asyncio.Event()

        with patch.object(
            listener,
            "_connect_and_listen",
            AsyncMock(side_effect=[PushProtocolError("rejected"), False, True]),
        ) as connect:
            await asyncio.wait_for(listener.run(shutdown), timeout=1)

        assert connect.await_count == 3
