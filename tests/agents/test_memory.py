"""
Tests for the webpilot.agents.memory module.

This module tests:
- Turn and ToolCallMsg validation
- Compaction of page-context payloads older than the most recent tool turns
- Conversion to chat-format messages, including screenshot placement
- ConversationMemory bookkeeping (page context attachment, unanswered calls)
"""

import json

import pytest

from webpilot.agents.memory import (
    COMPACTED_PREFIX,
    ConversationMemory,
    PageContextPayload,
    ToolCallMsg,
    Turn,
    compact,
    to_llm_messages,
)
from webpilot.environment.page_models import PageSnapshot


def context(n: int, screenshot: bool = False) -> PageContextPayload:
    return PageContextPayload(
        url=f"https://shop.example/{n}",
        title=f"Page {n}",
        element_count=n,
        digest=json.dumps({"step": n}),
        screenshot="data:image/png;base64,AAAA" if screenshot else None,
    )


def conversation(tool_turns: int) -> ConversationMemory:
    memory = ConversationMemory(full_context_turns=2)
    memory.add_user("buy shoes")
    for n in range(tool_turns):
        call = ToolCallMsg(id=f"c{n}", name="click_element", arguments='{"text": "Next"}')
        memory.add_model(f"step {n}", [call])
        memory.add_tool_result(f"c{n}", "click_element", '{"success":true}', page_context=context(n))
    return memory


# =============================================================================
# Validation
# =============================================================================

class TestValidation:

    def test_tool_call_needs_id_and_name(self):
        with pytest.raises(ValueError):
            ToolCallMsg(id="", name="click")
        with pytest.raises(ValueError):
            ToolCallMsg(id="c1", name="")

    def test_tool_call_arguments_must_be_a_string(self):
        with pytest.raises(ValueError):
            ToolCallMsg(id="c1", name="click", arguments={"x": 1})

    def test_invalid_role(self):
        with pytest.raises(ValueError, match="Invalid turn role"):
            Turn(role="assistant")

    def test_tool_result_needs_call_id(self):
        with pytest.raises(ValueError):
            Turn(role="tool-result", content="ok")

    def test_tool_call_wire_format(self):
        assert ToolCallMsg(id="c1", name="scroll", arguments="{}").to_dict() == {
            "id": "c1",
            "type": "function",
            "function": {"name": "scroll", "arguments": "{}"},
        }


# =============================================================================
# Compaction
# =============================================================================

class TestCompaction:

    def test_keeps_two_most_recent_tool_turns(self):
        memory = conversation(4)

        turns = memory.compacted()
        contexts = [t.page_context for t in turns if t.page_context is not None]

        assert [c.compacted for c in contexts] == [True, True, False, False]
        assert contexts[0].digest is None
        assert contexts[0].synopsis() == f"{COMPACTED_PREFIX} https://shop.example/0 | Page 0 | 0 interactive elements"
        assert contexts[3].digest == json.dumps({"step": 3})

    def test_nothing_compacted_at_or_below_keep(self):
        memory = conversation(2)
        assert memory.compacted() == memory.turns

    def test_pure(self):
        memory = conversation(5)
        before = list(memory.turns)

        first = compact(memory.turns, keep=2)
        second = compact(memory.turns, keep=2)

        assert memory.turns == before
        assert all(not t.page_context.compacted for t in memory.turns if t.page_context)
        assert first == second

    def test_message_text_untouched(self):
        memory = conversation(4)
        original = [(t.role, t.content, t.tool_calls) for t in memory.turns]
        compacted = [(t.role, t.content, t.tool_calls) for t in memory.compacted()]
        assert compacted == original

    def test_screenshot_dropped_on_compaction(self):
        payload = context(1, screenshot=True).compact()
        assert payload.screenshot is None
        assert payload.compact() is payload

    def test_keep_zero_compacts_everything(self):
        turns = compact(conversation(3).turns, keep=0)
        assert all(t.page_context.compacted for t in turns if t.page_context)


# =============================================================================
# Message conversion
# =============================================================================

class TestMessages:

    def test_roles_and_tool_calls(self):
        messages = conversation(1).to_llm_messages("system prompt")

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool"]
        assert messages[2]["tool_calls"][0]["function"]["name"] == "click_element"
        assert messages[3]["tool_call_id"] == "c0"
        assert messages[3]["content"].startswith('{"success":true}\n\n[page context]')

    def test_compacted_turn_renders_synopsis(self):
        messages = conversation(3).to_llm_messages()
        tool_messages = [m for m in messages if m["role"] == "tool"]
        assert COMPACTED_PREFIX in tool_messages[0]["content"]
        assert "[page context] {" in tool_messages[2]["content"]

    def test_screenshots_follow_the_tool_messages(self):
        memory = ConversationMemory()
        memory.add_user("look")
        memory.add_model(None, [ToolCallMsg(id="a", name="screenshot"), ToolCallMsg(id="b", name="scroll")])
        memory.add_tool_result("a", "screenshot", "{}", page_context=context(1, screenshot=True))
        memory.add_tool_result("b", "scroll", "{}")

        messages = to_llm_messages(memory.turns)

        assert [m["role"] for m in messages] == ["user", "assistant", "tool", "tool", "user"]
        parts = messages[-1]["content"]
        assert parts[0]["text"] == "Screenshot for tool call a:"
        assert parts[1]["image_url"]["url"].startswith("data:image/png")


# =============================================================================
# ConversationMemory
# =============================================================================

class TestConversationMemory:

    def test_attach_page_context_to_last_tool_result(self):
        memory = conversation(1)
        snapshot = PageSnapshot(url="https://shop.example/cart", title="Cart")

        memory.attach_page_context(PageContextPayload.from_snapshot(snapshot))

        assert memory.turns[-1].page_context.url == "https://shop.example/cart"
        assert '"url":"https://shop.example/cart"' in memory.turns[-1].page_context.digest

    def test_attach_keeps_tool_screenshot(self):
        memory = ConversationMemory()
        memory.add_model(None, [ToolCallMsg(id="a", name="screenshot")])
        memory.add_tool_result("a", "screenshot", "{}", page_context=context(1, screenshot=True))

        memory.attach_page_context(PageContextPayload(url="https://shop.example/", digest="{}"))

        assert memory.turns[-1].page_context.screenshot == "data:image/png;base64,AAAA"
        assert memory.turns[-1].page_context.digest == "{}"

    def test_attach_without_tool_result_is_ignored(self):
        memory = ConversationMemory()
        memory.add_user("hi")
        memory.attach_page_context(PageContextPayload(url="x"))
        assert memory.turns[-1].page_context is None

    def test_unanswered_tool_calls(self):
        memory = ConversationMemory()
        memory.add_model(None, [ToolCallMsg(id="a", name="scroll"), ToolCallMsg(id="b", name="scroll")])
        memory.add_tool_result("a", "scroll", "{}")

        assert [tc.id for tc in memory.unanswered_tool_calls()] == ["b"]

    def test_reset(self):
        memory = conversation(2)
        memory.reset_memory()
        assert len(memory) == 0
