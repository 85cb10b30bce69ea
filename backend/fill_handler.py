"""
Fill Handler - UI Message Processing

Turns UI panel messages into edits on the selected text layers. One message is
handled at a time; every failure is reported to the user as a notification and
never stops the handler.
"""

import asyncio
import logging
import random
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from dataset_registry import DatasetRegistry
from content_errors import (
    ContentError,
    EmptyDataset,
    EmptySelection,
    FontLoadFailure,
    UnknownMessageType,
    WrongNodeType,
)
from figma_communicator import ToolExecutionError
from figma_tools import SelectedNode
from ui_messages import (
    ClosePluginMessage,
    ContentCategory,
    ContentDataMessage,
    FillCategoryMessage,
    GetContentMessage,
    InjectContentMessage,
    parse_ui_message,
)

logger = logging.getLogger(__name__)

STATE_ACTIVE = "active"
STATE_CLOSED = "closed"


def utc_today() -> date:
    # Dates are UTC calendar dates
    return datetime.now(timezone.utc).date()


class FillHandler:
    """
    Handles get-content, inject-content, fill-category and close-plugin.

    Args:
        host: FigmaHost (or any object with the same coroutine methods)
        registry: where category datasets come from
        rng: random source for picking values
        today: returns the first date of a dates fill
    """

    def __init__(
        self,
        host,
        registry: DatasetRegistry,
        rng: Optional[random.Random] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.host = host
        self.registry = registry
        self.rng = rng or random.Random()
        self.today = today or utc_today
        self.state = STATE_ACTIVE
        self._handlers = {
            GetContentMessage: self._handle_get_content,
            InjectContentMessage: self._handle_inject_content,
            FillCategoryMessage: self._handle_fill_category,
            ClosePluginMessage: self._handle_close_plugin,
        }

    @property
    def closed(self) -> bool:
        return self.state == STATE_CLOSED

    def mark_closed(self, reason: str = "") -> None:
        if not self.closed:
            logger.info(f"🔒 Plugin session closed ({reason or 'unspecified'})")
        self.state = STATE_CLOSED

    async def handle(self, raw: Dict[str, Any]) -> None:
        """Process one UI message. Never raises for content failures."""
        if self.closed:
            logger.info(f"Ignoring message after close: {raw.get('type') if isinstance(raw, dict) else raw}")
            return

        try:
            message = parse_ui_message(raw)
        except UnknownMessageType as e:
            logger.info(f"Unknown message type: {e.message_type}")
            return
        except ValidationError as e:
            logger.error(f"❌ Malformed UI message {raw}: {e}")
            return

        logger.info(f"💬 Received message: {message.model_dump()}")
        try:
            await self._handlers[type(message)](message)
        except ContentError as e:
            logger.warning(f"⚠️ {e.code}: {e.notification}")
            await self._notify(e.notification)
        except ToolExecutionError as e:
            logger.error(f"❌ Plugin command {e.command} failed: code={e.code}, message={e.message}")
            await self._notify(f"Error: {e.message or e.code}")

    # ----- operations -----

    async def _handle_get_content(self, message: GetContentMessage) -> None:
        chunks: List[str] = []
        try:
            chunks = self.registry.available_chunks(ContentCategory.parse(message.category))
        except ContentError:
            logger.info(f"No bundled chunks for category {message.category!r}")
        reply = ContentDataMessage(category=message.category, data=[], chunks=chunks)
        await self.host.post_message(reply.model_dump())

    async def _handle_inject_content(self, message: InjectContentMessage) -> None:
        selection = await self.host.get_selection()
        if not selection:
            raise EmptySelection("Please select a text layer first")

        node = selection[0]
        if not node.is_text:
            raise WrongNodeType("Please select a text layer", node.type)

        await self._apply_text(node, message.content)
        await self._notify(f"Content injected: {message.content}")

    async def _handle_fill_category(self, message: FillCategoryMessage) -> None:
        # Check order: selection, category, dataset
        selection = await self.host.get_selection()
        if not selection:
            raise EmptySelection("Please select at least one text node.")

        category = ContentCategory.parse(message.category)
        if category.is_synthetic:
            await self._fill_dates(selection)
            return

        dataset = self.registry.get(category, message.chunk)
        if not dataset:
            raise EmptyDataset(category.value, message.chunk)

        filled = 0
        for node in selection:
            if self.closed:
                break
            if not node.is_text:
                continue
            value = self.rng.choice(dataset)
            try:
                await self._apply_text(node, value)
            except (FontLoadFailure, ToolExecutionError) as e:
                logger.error(f"Error applying text to {node.id}: {e}")
                continue
            filled += 1

        await self._notify(f"Filled {filled} {category.value} in selected text nodes.")

    async def _fill_dates(self, selection: List[SelectedNode]) -> None:
        current = self.today()
        filled = 0
        for node in selection:
            if self.closed:
                break
            if not node.is_text:
                continue
            try:
                await self._apply_text(node, current.isoformat())
            except (FontLoadFailure, ToolExecutionError) as e:
                logger.error(f"Error applying date to {node.id}: {e}")
                await self._notify("Error applying date to text layer")
                continue
            # The date only advances once a node actually received one
            current += timedelta(days=1)
            filled += 1

        if filled:
            await self._notify(f"Successfully filled {filled} text layers with dates")

    async def _handle_close_plugin(self, message: ClosePluginMessage) -> None:
        try:
            await self.host.close_plugin()
        finally:
            self.mark_closed("close-plugin")

    # ----- helpers -----

    async def _apply_text(self, node: SelectedNode, value: str) -> None:
        try:
            await self.host.load_font(node)
        except (ToolExecutionError, asyncio.TimeoutError) as e:
            raise FontLoadFailure("Error: Could not load font", node_id=node.id, cause=e) from e
        await self.host.set_text_characters(node.id, value)

    async def _notify(self, text: str) -> None:
        logger.info(f"🔔 {text}")
        if self.closed:
            return
        try:
            await self.host.notify(text)
        except (ToolExecutionError, asyncio.TimeoutError) as e:
            logger.error(f"❌ Failed to show notification {text!r}: {e}")
