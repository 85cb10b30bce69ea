"""Shared fakes for the content backend tests."""

import pytest

from dataset_registry import DatasetRegistry
from figma_communicator import ToolExecutionError
from figma_tools import FontName, SelectedNode


def text_node(node_id: str, family: str = "Inter", style: str = "Regular") -> SelectedNode:
    return SelectedNode(id=node_id, type="TEXT", name=f"Text {node_id}", font_name=FontName(family=family, style=style))


def shape_node(node_id: str, node_type: str = "RECTANGLE") -> SelectedNode:
    return SelectedNode(id=node_id, type=node_type, name=f"Shape {node_id}")


class FakeHost:
    """In-memory stand-in for the Figma document."""

    def __init__(self, selection=None, failing_fonts=(), locked=()):
        self.selection = list(selection or [])
        self.failing_fonts = set(failing_fonts)
        self.locked = set(locked)
        self.texts = {}
        self.notifications = []
        self.posted = []
        self.fonts_loaded = []
        self.closed = False

    async def get_selection(self):
        return list(self.selection)

    async def load_font(self, node):
        if node.id in self.failing_fonts:
            raise ToolExecutionError({"code": "font_load_failed", "message": "Font unavailable"}, command="load_font")
        self.fonts_loaded.append(node.id)

    async def set_text_characters(self, node_id, new_characters):
        if node_id in self.locked:
            raise ToolExecutionError({"code": "node_locked", "message": "Node is locked"}, command="set_text_characters")
        self.texts[node_id] = new_characters

    async def notify(self, message):
        self.notifications.append(message)

    async def post_message(self, payload):
        self.posted.append(payload)

    async def close_plugin(self):
        self.closed = True


@pytest.fixture
def registry():
    return DatasetRegistry()


@pytest.fixture
def host():
    return FakeHost()
