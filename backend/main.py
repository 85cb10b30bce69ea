import json
import os
import sys
import signal
import logging
import asyncio
from dataclasses import dataclass
from typing import Dict, Any, Optional, List
import websockets
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from dataset_registry import DatasetRegistry, DATASET_MODES, MODE_CHUNKED
from figma_communicator import FigmaCommunicator
from figma_tools import FigmaHost
from fill_handler import FillHandler
from ui_messages import is_ui_message

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='[%(asctime)s] [content] [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%dT%H:%M:%S'
)
logger = logging.getLogger(__name__)

# Message type constants to avoid stringly-typed conditionals
MESSAGE_TYPE_JOIN = "join"
MESSAGE_TYPE_PING = "ping"
MESSAGE_TYPE_PONG = "pong"
MESSAGE_TYPE_SYSTEM = "system"
MESSAGE_TYPE_TOOL_RESPONSE = "tool_response"
MESSAGE_TYPE_ERROR = "error"

DEFAULT_BRIDGE_URL = "ws://localhost:3055"
DEFAULT_CHANNEL = "justgo-content-default"


@dataclass
class ContentConfig:
    bridge_url: str = DEFAULT_BRIDGE_URL
    channel: str = DEFAULT_CHANNEL
    tool_timeout: float = 30.0
    data_dir: Optional[str] = None
    dataset_mode: str = MODE_CHUNKED


class ContentAgent:
    def __init__(self, config: ContentConfig, registry: Optional[DatasetRegistry] = None):
        self.config = config
        self.bridge_url = config.bridge_url
        self.channel = config.channel
        self.websocket = None
        self.running = True
        self.reconnect_delay = 1  # Start with 1 second
        self.max_reconnect_delay = 30  # Max 30 seconds
        self._keep_alive_task: Optional[asyncio.Task] = None
        self._worker_task: Optional[asyncio.Task] = None
        # UI messages are handled one at a time, off the listen loop, so tool
        # responses for an in-flight fill can still be received
        self._ui_queue: asyncio.Queue = asyncio.Queue()

        self.registry = registry or DatasetRegistry(config.data_dir, mode=config.dataset_mode)
        self.communicator: Optional[FigmaCommunicator] = None
        self.handler: Optional[FillHandler] = None
        logger.info(f"📚 Dataset registry ready (dir={self.registry.data_dir}, mode={self.registry.mode})")

    async def _send_json(self, payload: Dict[str, Any]) -> None:
        """Safely send a JSON-serializable payload over the websocket if connected."""
        if not self.websocket:
            raise RuntimeError("WebSocket not connected")
        await self.websocket.send(json.dumps(payload))

    def attach(self, websocket) -> None:
        """Bind a live bridge connection: communicator, host and a fresh plugin session."""
        self.websocket = websocket
        self.communicator = FigmaCommunicator(websocket, timeout=self.config.tool_timeout)
        self._new_session()

    def _new_session(self) -> None:
        self.handler = FillHandler(FigmaHost(self.communicator), self.registry)
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._process_ui_messages())

    async def connect(self) -> bool:
        """Connect to the bridge and join as agent"""
        try:
            logger.info(f"Connecting to bridge at {self.bridge_url}")
            websocket = await websockets.connect(self.bridge_url, max_size=None)
            self.attach(websocket)

            await self._send_json({
                "type": MESSAGE_TYPE_JOIN,
                "role": "agent",
                "channel": self.channel
            })
            logger.info(f"Sent join message for channel: {self.channel}")

            await self._send_json({"type": MESSAGE_TYPE_PING})
            logger.info("🏓 Sent ping message to test WebSocket bidirectional communication")

            self._keep_alive_task = asyncio.create_task(self._websocket_keep_alive())
            logger.info(f"Initialized FigmaCommunicator (timeout: {self.config.tool_timeout}s)")

            # Reset reconnect delay on successful connection
            self.reconnect_delay = 1
            return True

        except Exception as e:
            logger.error(f"Failed to connect: {e}")
            return False

    async def handle_message(self, message: Dict[str, Any]) -> None:
        """Handle incoming messages from the bridge via a clean async dispatch."""
        msg_type = message.get("type")
        logger.debug(f"🔍 Raw message received - Type: '{msg_type}', Keys: {list(message.keys())}")

        handlers = {
            MESSAGE_TYPE_SYSTEM: self._handle_system,
            MESSAGE_TYPE_PONG: self._handle_pong,
            MESSAGE_TYPE_TOOL_RESPONSE: self._handle_tool_response,
            MESSAGE_TYPE_ERROR: self._handle_bridge_error,
        }

        handler = handlers.get(msg_type)
        if handler is None:
            handler = self._enqueue_ui_message if is_ui_message(message) else self._handle_unknown
        await handler(message)

    async def _handle_system(self, message: Dict[str, Any]) -> None:
        sys_msg = message.get('message')
        logger.info(f"🔧 System message: {sys_msg}")
        if not isinstance(sys_msg, str) or 'plugin' not in sys_msg.lower():
            return
        text = sys_msg.lower()
        if 'disconnected' in text:
            if self.handler:
                self.handler.mark_closed("plugin_disconnected")
            if self.communicator:
                self.communicator.cleanup_pending_requests()
        elif 'connected' in text or 'joined' in text:
            if self.handler is None or self.handler.closed:
                self._new_session()
                logger.info("🆕 Started a new plugin session")

    async def _handle_pong(self, _: Dict[str, Any]) -> None:
        logger.info("🏓 Received pong response")

    async def _handle_tool_response(self, message: Dict[str, Any]) -> None:
        logger.debug(f"📨 Received tool_response: {message.get('id', 'no-id')}")
        if self.communicator:
            self.communicator.handle_tool_response(message)
        else:
            logger.warning("Received tool_response but communicator not initialized")

    async def _handle_bridge_error(self, message: Dict[str, Any]) -> None:
        error_msg = message.get("message", "Unknown error")
        logger.error(f"Bridge error: {error_msg}")

    async def _handle_unknown(self, message: Dict[str, Any]) -> None:
        logger.info(f"Unknown message type: {message.get('type')}")

    async def _enqueue_ui_message(self, message: Dict[str, Any]) -> None:
        await self._ui_queue.put(message)

    async def _process_ui_messages(self) -> None:
        """Drain the UI queue, one message at a time."""
        while True:
            message = await self._ui_queue.get()
            try:
                if self.handler is None:
                    logger.warning("Dropping UI message: no plugin session")
                else:
                    await self.handler.handle(message)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if not self.running or (task is not None and task.cancelling()):
                    raise
                logger.warning("🚫 UI message interrupted by a cancelled plugin request")
            except Exception as e:
                logger.error(f"❌ Error handling UI message: {e}")
            finally:
                self._ui_queue.task_done()

    async def listen(self) -> None:
        """Listen for messages from the bridge"""
        logger.info("🎧 Starting to listen for messages from bridge")
        while self.running and self.websocket:
            try:
                raw_message = await self.websocket.recv()
            except asyncio.CancelledError:
                logger.info("🛑 Listen loop cancelled")
                break
            except Exception as e:
                logger.error(f"❌ Error receiving message: {e}")
                break

            if not raw_message:
                logger.warning("📡 Received empty WebSocket message")
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError as e:
                logger.error(f"❌ Failed to decode message: {e}, Raw: {raw_message}")
                continue
            if not isinstance(message, dict):
                logger.error(f"❌ Ignoring non-object message: {raw_message}")
                continue

            try:
                await self.handle_message(message)
            except Exception as e:
                logger.error(f"❌ Error handling message: {e}")

    async def _websocket_keep_alive(self, interval: int = 30) -> None:
        """Keep WebSocket connection alive with periodic pings"""
        try:
            while self.running and self.websocket:
                await asyncio.sleep(interval)
                if not self.websocket:
                    break
                try:
                    pong_waiter = await self.websocket.ping()
                    await asyncio.wait_for(pong_waiter, timeout=10)
                    logger.debug("💓 WebSocket keep-alive ping successful")
                except asyncio.TimeoutError:
                    logger.warning("💔 WebSocket keep-alive ping timed out")
                    break
                except Exception as e:
                    logger.error(f"💔 WebSocket keep-alive ping failed: {e}")
                    break
        except asyncio.CancelledError:
            logger.debug("💓 WebSocket keep-alive task cancelled")

    async def run_with_reconnect(self) -> None:
        """Main loop with reconnection logic"""
        while self.running:
            try:
                if await self.connect():
                    logger.info("🌉 Connected to bridge successfully")
                    await self.listen()
                else:
                    logger.warning("Failed to connect to bridge")
            except Exception as e:
                logger.error(f"Unexpected error: {e}")

            if self.communicator:
                self.communicator.cleanup_pending_requests()
            if self._keep_alive_task and not self._keep_alive_task.done():
                self._keep_alive_task.cancel()

            if self.running:
                logger.info(f"Reconnecting in {self.reconnect_delay} seconds...")
                await asyncio.sleep(self.reconnect_delay)

                # Exponential backoff up to max delay
                self.reconnect_delay = min(self.reconnect_delay * 2, self.max_reconnect_delay)

    def shutdown(self) -> None:
        """Graceful shutdown"""
        logger.info("Shutting down content agent")
        self.running = False

        for task in (self._keep_alive_task, self._worker_task):
            if task and not task.done():
                task.cancel()

        if self.communicator:
            self.communicator.cleanup_pending_requests()
            logger.info("Cleaned up pending tool calls")

        if self.handler:
            self.handler.mark_closed("shutdown")
        self.websocket = None


def get_config(argv: Optional[List[str]] = None) -> ContentConfig:
    """Get configuration from environment variables or CLI args"""
    bridge_url = os.getenv("BRIDGE_URL", DEFAULT_BRIDGE_URL)
    channel = os.getenv("FIGMA_CHANNEL")
    data_dir = os.getenv("CONTENT_DATA_DIR")
    dataset_mode = os.getenv("CONTENT_DATASET_MODE", MODE_CHUNKED)
    try:
        tool_timeout = float(os.getenv("FIGMA_TOOL_TIMEOUT", "30.0"))
    except ValueError:
        logger.warning("Invalid FIGMA_TOOL_TIMEOUT, using 30.0")
        tool_timeout = 30.0

    # Parse CLI args for overrides
    args = sys.argv[1:] if argv is None else argv
    for arg in args:
        if arg.startswith("--channel="):
            channel = arg.split("=", 1)[1]
        elif arg.startswith("--bridge-url="):
            bridge_url = arg.split("=", 1)[1]
        elif arg.startswith("--data-dir="):
            data_dir = arg.split("=", 1)[1]
        elif arg.startswith("--dataset-mode="):
            dataset_mode = arg.split("=", 1)[1]

    if not channel:
        channel = DEFAULT_CHANNEL
        logger.info(f"No channel specified, using default: {channel}")

    if dataset_mode not in DATASET_MODES:
        logger.error(f"CONTENT_DATASET_MODE must be one of {', '.join(DATASET_MODES)}, got {dataset_mode!r}")
        sys.exit(1)

    return ContentConfig(
        bridge_url=bridge_url,
        channel=channel,
        tool_timeout=tool_timeout,
        data_dir=data_dir or None,
        dataset_mode=dataset_mode,
    )


def main():
    config = get_config()

    logger.info("Starting JustGo Content agent")
    logger.info(f"Bridge URL: {config.bridge_url}")
    logger.info(f"Channel: {config.channel}")

    agent = ContentAgent(config)

    # Handle shutdown signals
    def signal_handler(signum, frame):
        logger.info("Received shutdown signal")
        agent.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        asyncio.run(agent.run_with_reconnect())
    except KeyboardInterrupt:
        logger.info("Agent interrupted")
    finally:
        agent.shutdown()


if __name__ == "__main__":
    main()
