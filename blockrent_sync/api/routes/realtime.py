"""
Realtime websocket bridge.

Clients join channels with ``{"action": "join", "wallet": "0x..."}`` (the
wallet's private channel) or ``{"action": "join", "channel": "marketplace"}``
and receive ``{"event", "channel", "data"}`` messages for every broadcast.
"""

import asyncio
import logging
from concurrent.futures import Future
from typing import Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from blockrent_sync.api.dependencies import get_broker
from blockrent_sync.core.realtime import MARKETPLACE_CHANNEL, RealtimePublisher, user_channel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def channel_for(message: dict) -> Optional[str]:
    """Resolve the channel named by a join/leave message."""
    if message.get('wallet'):
        return user_channel(str(message['wallet']))
    channel = message.get('channel')
    if channel == MARKETPLACE_CHANNEL:
        return MARKETPLACE_CHANNEL
    if isinstance(channel, str) and channel.startswith('user_') and len(channel) > len('user_'):
        return channel.lower()
    return None


def log_send_failure(future: Future):
    """Done-callback for a message forwarded from a broker thread."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning(f"Failed to push realtime message to websocket client: {error}")


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, broker: RealtimePublisher = Depends(get_broker)):
    await websocket.accept()
    loop = asyncio.get_running_loop()
    tokens: Dict[str, int] = {}

    def forward(channel: str):
        def callback(event: str, payload: dict):
            # Runs on a broker worker thread
            message = jsonable_encoder({'event': event, 'channel': channel, 'data': payload})
            future = asyncio.run_coroutine_threadsafe(websocket.send_json(message), loop)
            future.add_done_callback(log_send_failure)
        return callback

    try:
        while True:
            message = await websocket.receive_json()
            action = message.get('action') if isinstance(message, dict) else None
            channel = channel_for(message) if action in ('join', 'leave') else None

            if channel is None:
                await websocket.send_json({'event': 'error', 'data': {'message': 'Invalid message'}})
                continue

            if action == 'join':
                if channel not in tokens:
                    tokens[channel] = broker.subscribe(channel, forward(channel))
                    logger.info(f"Websocket client joined {channel}")
                await websocket.send_json({'event': 'joined', 'channel': channel})
            else:
                token = tokens.pop(channel, None)
                if token is not None:
                    broker.unsubscribe(token)
                await websocket.send_json({'event': 'left', 'channel': channel})
    except WebSocketDisconnect:
        logger.debug("Websocket client disconnected")
    finally:
        for token in tokens.values():
            broker.unsubscribe(token)
