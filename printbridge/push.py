"""Realtime push listener for job creation events (Pusher protocol, as spoken by Reverb).

The listener only decodes transport frames. It hands what it learns to the
ingestion side as messages on an asyncio queue:

- ``CatchUpRequested`` after every successful channel subscription
- ``JobCreated`` for every decoded job creation event
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp
from pydantic import ValidationError

from printbridge import __version__
from printbridge.api import RemoteApiClient
from printbridge.config import BridgeConfig, SharedConfig
from printbridge.exceptions import ApiError, DecodeError, PushProtocolError
from printbridge.scheduler import race_shutdown, wait_for_shutdown
from printbridge.schemas import PushJobCreated

logger = logging.getLogger(__name__)

JOB_CREATED_EVENTS = {"PrintJobCreated", ".PrintJobCreated"}


@dataclass(frozen=True)
class CatchUpRequested:
    """Fetch jobs created while the channel was disconnected."""


@dataclass(frozen=True)
class JobCreated:
    """A job was created remotely."""

    job_id: int


PushMessage = CatchUpRequested | JobCreated


def sign_subscription(app_key: str, app_secret: str, socket_id: str, channel: str) -> str:
    """Sign a private channel subscription.

    Args:
        app_key: Push application key.
        app_secret: Push application secret.
        socket_id: Socket id from the connection handshake.
        channel: Private channel name.

    Returns:
        str: ``"<app_key>:<hex hmac-sha256>"``.
    """
    signature = hmac.new(
        app_secret.encode(), f"{socket_id}:{channel}".encode(), hashlib.sha256
    ).hexdigest()
    return f"{app_key}:{signature}"


def push_url(config: BridgeConfig) -> str:
    """Build the websocket URL of the push server.

    Raises:
        PushProtocolError: If no push host is configured.
    """
    if not config.push_host:
        raise PushProtocolError("push_host is not configured")
    scheme = "wss" if config.push_use_tls else "ws"
    port = f":{config.push_port}" if config.push_port else ""
    return (
        f"{scheme}://{config.push_host}{port}/app/{config.push_app_key}"
        f"?protocol=7&client=printbridge&version={__version__}&flash=false"
    )


def _decode_data(data: Any) -> dict:
    """Event data arrives either as an object or as a JSON-encoded string."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise DecodeError(f"Invalid event data: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"Unexpected event data type: {type(data).__name__}")
    return data


class PushListener:
    """Long-lived push channel connection with reconnect.

    Attributes:
        config: Shared configuration.
        queue: Where decoded messages are delivered.
        api: Remote API client, used when a remote auth endpoint signs subscriptions.
    """

    def __init__(
        self,
        config: SharedConfig,
        queue: asyncio.Queue,
        api: RemoteApiClient | None = None,
    ):
        self.config = config
        self.queue = queue
        self.api = api

    async def run(self, shutdown: asyncio.Event) -> None:
        """Connect, listen, and reconnect after a fixed delay until shutdown.

        Args:
            shutdown: Event set when the agent is stopping.
        """
        logger.info("Starting push listener")

        while not shutdown.is_set():
            try:
                if await self._connect_and_listen(shutdown):
                    break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Push connection failed: {e}")
            except (PushProtocolError, ApiError, DecodeError) as e:
                logger.error(f"Push channel error: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error in push listener: {e}")

            delay = self.config.snapshot().push_reconnect_delay
            logger.info(f"Waiting {delay:g} seconds before reconnecting...")
            if await wait_for_shutdown(shutdown, delay):
                break
            logger.info("Reconnecting to push server")

        logger.info("Push listener stopped")

    async def _connect_and_listen(self, shutdown: asyncio.Event) -> bool:
        """Hold one connection open.

        Returns:
            bool: True if shutdown was requested while connected.
        """
        url = push_url(self.config.snapshot())
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(url) as ws:
                logger.info("Connected to push server")
                if await race_shutdown(self._receive_loop(ws), shutdown):
                    logger.info("Push listener received shutdown signal")
                    return True
        return False

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.handle_message(ws, msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise PushProtocolError(f"Websocket error: {ws.exception()}")
        logger.info("Push connection lost")

    async def handle_message(self, ws, raw: str) -> None:
        """Handle one protocol frame.

        Args:
            ws: Websocket to reply on (anything with an async ``send_json``).
            raw: Frame text.
        """
        try:
            message = json.loads(raw)
        except ValueError:
            logger.error(f"Invalid JSON frame from push server: {raw[:200]}")
            return
        if not isinstance(message, dict):
            logger.error(f"Unexpected frame from push server: {raw[:200]}")
            return

        event = message.get("event")
        data = message.get("data")

        if event == "pusher:connection_established":
            socket_id = _decode_data(data).get("socket_id")
            if not socket_id:
                raise PushProtocolError("Handshake did not include a socket id")
            logger.info(f"Connection established (socket {socket_id})")
            await self._subscribe(ws, socket_id)

        elif event == "pusher_internal:subscription_succeeded":
            logger.info(f"Subscribed to channel {message.get('channel')}")
            await self.queue.put(CatchUpRequested())

        elif event == "pusher:subscription_error":
            logger.error(f"Subscription to {message.get('channel')} rejected: {data}")

        elif event == "pusher:ping":
            await ws.send_json({"event": "pusher:pong", "data": {}})

        elif event == "pusher:error":
            logger.error(f"Push server error: {data}")

        elif event in JOB_CREATED_EVENTS:
            try:
                payload = PushJobCreated.model_validate(_decode_data(data))
            except (DecodeError, ValidationError) as e:
                logger.error(f"Failed to parse print job event: {e} (data: {str(data)[:200]})")
                return
            logger.info(f"Received print job creation event for job {payload.model.id}")
            await self.queue.put(JobCreated(payload.model.id))

        else:
            logger.debug(f"Ignoring push event {event}")

    async def _subscribe(self, ws, socket_id: str) -> None:
        config = self.config.snapshot()
        channel = config.push_channel
        if config.push_auth_endpoint and self.api is not None:
            auth = await self.api.authorize_channel(socket_id, channel)
        else:
            auth = sign_subscription(
                config.push_app_key, config.push_app_secret, socket_id, channel
            )
        await ws.send_json(
            {"event": "pusher:subscribe", "data": {"channel": channel, "auth": auth}}
        )
        logger.debug(f"Subscription to {channel} requested")
