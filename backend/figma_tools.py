"""
Figma Tools - Host Document Commands

This module wraps the plugin commands the content backend needs (selection,
fonts, text, notifications, UI messages, closing) behind FigmaHost, on top of
the figma_communicator RPC layer.
"""


import logging
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from figma_communicator import FigmaCommunicator, ToolExecutionError

logger = logging.getLogger(__name__)

TEXT_NODE_TYPE = "TEXT"


# ============================================
# == PYDANTIC MODELS FOR HOST NODE SNAPSHOTS =
# ============================================

class FontName(BaseModel):
    model_config = ConfigDict(extra='forbid')
    family: str
    style: str


class SelectedNode(BaseModel):
    """Read-only snapshot of one selected node, in selection order."""
    model_config = ConfigDict(extra='ignore', populate_by_name=True)
    id: str
    type: str
    name: Optional[str] = None
    # None when the plugin reports mixed fonts or the node has no text
    font_name: Optional[FontName] = Field(default=None, alias="fontName")

    @property
    def is_text(self) -> bool:
        return self.type == TEXT_NODE_TYPE


class FigmaHost:
    """
    The host document as seen by the fill handler.

    Every call is one round trip to the plugin. Nothing is cached: the
    selection is read fresh each time it is asked for.
    """

    def __init__(self, communicator: FigmaCommunicator):
        self.communicator = communicator

    async def _call(self, command: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return await self.communicator.send_command(command, params)
        except ToolExecutionError:
            # Preserve structured plugin errors for the handler
            raise
        except Exception as e:
            logger.error(f"❌ Communication/system error in {command}: {str(e)}")
            raise ToolExecutionError({
                "code": "communication_error",
                "message": f"Failed to call {command}: {str(e)}",
                "details": {"command": command}
            }, command=command, params=params)

    async def get_selection(self) -> List[SelectedNode]:
        """Return the current page selection in selection order."""
        result = await self._call("get_selection")
        raw_nodes = result.get("selection", []) if isinstance(result, dict) else result
        try:
            nodes = [SelectedNode.model_validate(raw) for raw in (raw_nodes or [])]
        except ValidationError as e:
            logger.error(f"❌ Malformed selection from plugin: {e}")
            raise ToolExecutionError({
                "code": "invalid_selection",
                "message": "Could not read the current selection",
                "details": {"errors": e.errors(include_url=False)}
            }, command="get_selection") from e
        logger.info(f"🧭 Selection has {len(nodes)} node(s)")
        return nodes

    async def load_font(self, node: SelectedNode) -> None:
        """Load the node's current font so its characters can be replaced."""
        params: Dict[str, Any] = {"node_id": node.id}
        if node.font_name is not None:
            params.update(node.font_name.model_dump())
        logger.debug(f"🔤 load_font: {params}")
        await self._call("load_font", params)

    async def set_text_characters(self, node_id: str, new_characters: str) -> None:
        if not isinstance(node_id, str) or not node_id:
            raise ToolExecutionError({"code": "missing_parameter", "message": "'node_id' must be a non-empty string", "details": {"node_id": node_id}})
        logger.info(f"✏️ set_text_characters: node_id={node_id}")
        await self._call("set_text_characters", {"node_id": node_id, "new_characters": new_characters})

    async def notify(self, message: str) -> None:
        """Show a transient toast in the editor."""
        await self._call("notify", {"message": message})

    async def post_message(self, payload: Dict[str, Any]) -> None:
        """Forward a message to the plugin UI panel."""
        await self._call("post_message", {"payload": payload})

    async def close_plugin(self) -> None:
        await self._call("close_plugin")
