import random
from datetime import date, timedelta

import pytest

from conftest import FakeHost, shape_node, text_node
from dataset_registry import DatasetRegistry
from figma_tools import FigmaHost
from fill_handler import FillHandler
from ui_messages import ContentCategory

TODAY = date(2024, 2, 27)


def make_handler(host, registry=None, seed=7):
    return FillHandler(host, registry or DatasetRegistry(), rng=random.Random(seed), today=lambda: TODAY)


@pytest.mark.asyncio
@pytest.mark.parametrize("category", ["names", "emails", "phones", "addresses"])
async def test_fill_assigns_values_from_dataset(category, registry):
    host = FakeHost([text_node("1"), text_node("2"), text_node("3")])
    handler = make_handler(host, registry)

    await handler.handle({"type": "fill-category", "category": category})

    dataset = registry.get(ContentCategory(category), "a")
    assert set(host.texts) == {"1", "2", "3"}
    assert all(value in dataset for value in host.texts.values())
    assert host.notifications == [f"Filled 3 {category} in selected text nodes."]


@pytest.mark.asyncio
async def test_fill_uses_requested_chunk(registry):
    host = FakeHost([text_node(str(i)) for i in range(5)])
    handler = make_handler(host, registry)

    await handler.handle({"type": "fill-category", "category": "names", "chunk": "b"})

    chunk_b = registry.get(ContentCategory.NAMES, "b")
    assert all(value in chunk_b for value in host.texts.values())


@pytest.mark.asyncio
async def test_fill_picks_with_the_injected_rng(registry):
    host = FakeHost([text_node("1"), text_node("2"), text_node("3"), text_node("4")])
    handler = make_handler(host, registry, seed=42)

    await handler.handle({"type": "fill-category", "category": "emails"})

    expected_rng = random.Random(42)
    dataset = registry.get(ContentCategory.EMAILS)
    expected = [expected_rng.choice(dataset) for _ in range(4)]
    assert [host.texts[n] for n in ("1", "2", "3", "4")] == expected


@pytest.mark.asyncio
async def test_fill_skips_non_text_nodes(registry):
    host = FakeHost([shape_node("frame", "FRAME"), text_node("t1"), shape_node("rect"), text_node("t2")])
    handler = make_handler(host, registry)

    await handler.handle({"type": "fill-category", "category": "phones"})

    assert set(host.texts) == {"t1", "t2"}
    assert host.fonts_loaded == ["t1", "t2"]
    assert host.notifications == ["Filled 2 phones in selected text nodes."]


@pytest.mark.asyncio
async def test_fill_isolates_font_failures(registry):
    host = FakeHost([text_node("1"), text_node("2"), text_node("3")], failing_fonts={"2"})
    handler = make_handler(host, registry)

    await handler.handle({"type": "fill-category", "category": "names"})

    assert set(host.texts) == {"1", "3"}
    assert host.notifications == ["Filled 2 names in selected text nodes."]


@pytest.mark.asyncio
async def test_fill_isolates_locked_nodes(registry):
    host = FakeHost([text_node("1"), text_node("2")], locked={"1"})
    handler = make_handler(host, registry)

    await handler.handle({"type": "fill-category", "category": "addresses"})

    assert set(host.texts) == {"2"}
    assert host.notifications == ["Filled 1 addresses in selected text nodes."]


@pytest.mark.asyncio
async def test_dates_example_from_mixed_selection():
    host = FakeHost([text_node("A"), shape_node("B"), text_node("C")])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "dates"})

    assert host.texts == {"A": "2024-02-27", "C": "2024-02-28"}
    assert host.notifications == ["Successfully filled 2 text layers with dates"]


@pytest.mark.asyncio
async def test_dates_are_consecutive_in_selection_order():
    ids = [f"n{i}" for i in range(5)]
    host = FakeHost([text_node(i) for i in ids])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "dates"})

    # Crosses the leap day
    expected = [(TODAY + timedelta(days=offset)).isoformat() for offset in range(5)]
    assert [host.texts[i] for i in ids] == expected
    assert expected[2] == "2024-02-29"


@pytest.mark.asyncio
async def test_dates_ignore_chunk():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "dates", "chunk": "zz"})

    assert host.texts == {"1": "2024-02-27"}


@pytest.mark.asyncio
async def test_dates_font_failure_reports_and_does_not_advance():
    host = FakeHost([text_node("1"), text_node("2"), text_node("3")], failing_fonts={"2"})
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "dates"})

    assert host.texts == {"1": "2024-02-27", "3": "2024-02-28"}
    assert host.notifications == [
        "Error applying date to text layer",
        "Successfully filled 2 text layers with dates",
    ]


@pytest.mark.asyncio
async def test_fill_with_empty_selection():
    host = FakeHost([])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "names"})

    assert host.texts == {}
    assert host.notifications == ["Please select at least one text node."]


@pytest.mark.asyncio
async def test_fill_with_unknown_category_mutates_nothing():
    host = FakeHost([text_node("1"), text_node("2")])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "colors"})

    assert host.texts == {}
    assert host.fonts_loaded == []
    assert host.notifications == ["Invalid category: colors"]


@pytest.mark.asyncio
async def test_selection_is_checked_before_category():
    host = FakeHost([])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "colors"})

    assert host.notifications == ["Please select at least one text node."]


@pytest.mark.asyncio
async def test_fill_with_missing_chunk_reports_empty_dataset():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "names", "chunk": "q"})

    assert host.texts == {}
    assert host.notifications == ['No data available for category "names"']


@pytest.mark.asyncio
async def test_fill_with_empty_dataset_file(tmp_path):
    (tmp_path / "emails-a.json").write_text("[]", encoding="utf-8")
    host = FakeHost([text_node("1")])
    handler = make_handler(host, DatasetRegistry(tmp_path))

    await handler.handle({"type": "fill-category", "category": "emails"})

    assert host.texts == {}
    assert host.notifications == ['No data available for category "emails"']


@pytest.mark.asyncio
async def test_inject_content_into_first_selected_text_node():
    host = FakeHost([text_node("1"), text_node("2")])
    handler = make_handler(host)

    await handler.handle({"type": "inject-content", "content": "Jane Doe"})

    assert host.texts == {"1": "Jane Doe"}
    assert host.notifications == ["Content injected: Jane Doe"]


@pytest.mark.asyncio
async def test_inject_content_with_no_selection():
    host = FakeHost([])
    handler = make_handler(host)

    await handler.handle({"type": "inject-content", "content": "Jane Doe"})

    assert host.texts == {}
    assert host.notifications == ["Please select a text layer first"]


@pytest.mark.asyncio
async def test_inject_content_into_non_text_node():
    host = FakeHost([shape_node("frame", "FRAME"), text_node("2")])
    handler = make_handler(host)

    await handler.handle({"type": "inject-content", "content": "Jane Doe"})

    assert host.texts == {}
    assert host.notifications == ["Please select a text layer"]


@pytest.mark.asyncio
async def test_inject_content_font_failure():
    host = FakeHost([text_node("1")], failing_fonts={"1"})
    handler = make_handler(host)

    await handler.handle({"type": "inject-content", "content": "Jane Doe"})

    assert host.texts == {}
    assert host.notifications == ["Error: Could not load font"]


@pytest.mark.asyncio
async def test_inject_content_into_locked_node():
    host = FakeHost([text_node("1")], locked={"1"})
    handler = make_handler(host)

    await handler.handle({"type": "inject-content", "content": "Jane Doe"})

    assert host.texts == {}
    assert host.notifications == ["Error: Node is locked"]


@pytest.mark.asyncio
async def test_inject_content_in_envelope():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    await handler.handle({"pluginMessage": {"type": "inject-content", "content": "hello@example.com"}})

    assert host.texts == {"1": "hello@example.com"}


@pytest.mark.asyncio
async def test_get_content_posts_category_descriptor():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    await handler.handle({"type": "get-content", "category": "names"})

    assert host.posted == [{"type": "content-data", "category": "names", "data": [], "chunks": ["a", "b"]}]
    assert host.texts == {}
    assert host.notifications == []


@pytest.mark.asyncio
async def test_get_content_for_unknown_category():
    host = FakeHost()
    handler = make_handler(host)

    await handler.handle({"type": "get-content", "category": "colors"})

    assert host.posted == [{"type": "content-data", "category": "colors", "data": [], "chunks": []}]
    assert host.notifications == []


@pytest.mark.asyncio
async def test_close_plugin_is_terminal():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    await handler.handle({"type": "close-plugin"})
    await handler.handle({"type": "inject-content", "content": "too late"})

    assert host.closed
    assert handler.closed
    assert host.texts == {}
    assert host.notifications == []


@pytest.mark.asyncio
async def test_host_initiated_close():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    handler.mark_closed("plugin_disconnected")
    await handler.handle({"type": "fill-category", "category": "dates"})

    assert host.texts == {}
    assert not host.closed


@pytest.mark.asyncio
async def test_unknown_message_type_is_ignored():
    host = FakeHost([text_node("1")])
    handler = make_handler(host)

    await handler.handle({"type": "resize-ui", "width": 400})
    await handler.handle({"type": "inject-content"})

    assert host.texts == {}
    assert host.notifications == []
    assert host.posted == []
    assert not handler.closed


@pytest.mark.asyncio
async def test_static_registry_fill():
    registry = DatasetRegistry(mode="static")
    host = FakeHost([text_node(str(i)) for i in range(10)])
    handler = make_handler(host, registry)

    await handler.handle({"type": "fill-category", "category": "names", "chunk": "a"})

    merged = registry.get(ContentCategory.NAMES)
    assert all(value in merged for value in host.texts.values())
    assert len(host.texts) == 10


@pytest.mark.asyncio
async def test_dates_without_text_nodes_sends_no_success_toast():
    host = FakeHost([shape_node("1"), shape_node("2", "FRAME")])
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "dates"})

    assert host.texts == {}
    assert host.notifications == []


@pytest.mark.asyncio
async def test_dates_when_every_font_fails():
    host = FakeHost([text_node("1"), text_node("2")], failing_fonts={"1", "2"})
    handler = make_handler(host)

    await handler.handle({"type": "fill-category", "category": "dates"})

    assert host.texts == {}
    assert host.notifications == ["Error applying date to text layer"] * 2


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ['{"not": "a list"}', "[\"unterminated"])
async def test_fill_with_unreadable_dataset_file(tmp_path, content):
    (tmp_path / "names-a.json").write_text(content, encoding="utf-8")
    host = FakeHost([text_node("1")])
    handler = make_handler(host, DatasetRegistry(tmp_path))

    await handler.handle({"type": "fill-category", "category": "names"})

    assert host.texts == {}
    assert host.notifications == ['No data available for category "names"']


class MalformedSelectionPlugin:
    def __init__(self):
        self.calls = []

    async def send_command(self, command, params=None):
        self.calls.append((command, params))
        if command == "get_selection":
            return {"selection": [{"name": "no id or type"}]}
        return {}


@pytest.mark.asyncio
async def test_malformed_selection_is_reported():
    plugin = MalformedSelectionPlugin()
    handler = make_handler(FigmaHost(plugin))

    await handler.handle({"type": "fill-category", "category": "emails"})

    assert [c for c, _ in plugin.calls] == ["get_selection", "notify"]
    assert plugin.calls[-1] == ("notify", {"message": "Error: Could not read the current selection"})
