"""Tests for the agent tools and the scripted backend's tool use."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from agent_stream_server.agents import AgentCatalog
from agent_stream_server.backends import ScriptedBackend
from agent_stream_server.backends.scripted import tokenize
from agent_stream_server.errors import AgentNotFoundError, GenerationError
from agent_stream_server.producer import ToolCompleted, ToolFailed, ToolStarted
from agent_stream_server.tools import get_registered_tools, get_tools_by_name
from agent_stream_server.tools.calculator_tool import calculate, evaluate_expression


class TestCalculator:
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("2 + 3", "5"),
            ("(2 + 3) * 4", "20"),
            ("7 / 2", "3.5"),
            ("8 / 2", "4"),
            ("-3 ** 2", "-9"),
            ("17 // 5", "3"),
            ("17 % 5", "2"),
        ],
    )
    def test_evaluates(self, expression, expected):
        assert calculate.invoke({"expression": expression}) == expected

    @pytest.mark.parametrize("expression", ["__import__('os')", "a + 1", "2 +", "2 ** 1000", "[1, 2]"])
    def test_rejects_unsafe_or_invalid(self, expression):
        with pytest.raises(ValueError):
            evaluate_expression(expression)

    def test_division_by_zero_propagates(self):
        with pytest.raises(ZeroDivisionError):
            evaluate_expression("1 / 0")


class TestTimeTool:
    def test_utc_default(self):
        value = datetime.fromisoformat(get_tools_by_name()["get_current_time"].invoke({}))
        assert value.utcoffset() == timedelta(0)

    def test_offset(self):
        value = datetime.fromisoformat(get_tools_by_name()["get_current_time"].invoke({"utc_offset_hours": 2}))
        assert value.utcoffset() == timedelta(hours=2)

    def test_offset_out_of_range(self):
        with pytest.raises(ValueError):
            get_tools_by_name()["get_current_time"].invoke({"utc_offset_hours": 20})


class TestRegistry:
    def test_registered_tools(self):
        assert [tool.name for tool in get_registered_tools()] == ["get_current_time", "calculate"]

    def test_agent_tools_resolve(self):
        catalog = AgentCatalog()
        assert [tool.name for tool in catalog.get("calculator").tools()] == ["calculate"]
        assert len(catalog.get("assistant").tools()) == 2

    def test_unknown_agent(self):
        with pytest.raises(AgentNotFoundError):
            AgentCatalog().get("missing")

    def test_system_prompt_override_only_touches_default_prompt(self):
        base = AgentCatalog()
        catalog = base.with_system_prompt("Be terse.")
        assert catalog.get("assistant").system_prompt == "Be terse."
        assert catalog.get("calculator").system_prompt == base.get("calculator").system_prompt


class TestScriptedBackend:
    def test_tokenize_keeps_whitespace(self):
        assert tokenize("Hello  big world ") == ["Hello  ", "big ", "world "]
        assert "".join(tokenize(" leading")) == " leading"

    def test_time_question_uses_tool(self, make_request):
        chunks = ScriptedBackend().plan(make_request("What time is it?"))
        assert chunks[0] == ToolStarted(name="get_current_time", params={}, call_id="call_0")
        assert isinstance(chunks[1], ToolCompleted)
        assert "".join(c for c in chunks if isinstance(c, str)).startswith("The current time is ")

    def test_failing_tool_reported(self, make_request):
        chunks = ScriptedBackend().plan(make_request("What is 2 ** 1000 + 1?"))
        assert isinstance(chunks[1], ToolFailed)
        assert "".join(c for c in chunks if isinstance(c, str)).startswith("I could not use calculate:")

    def test_agent_without_tool_echoes(self, make_request):
        request = make_request("What time is it?")
        request.agent = AgentCatalog().get("calculator")
        chunks = ScriptedBackend().plan(request)
        assert all(isinstance(chunk, str) for chunk in chunks)
        assert "".join(chunks) == 'You said: "What time is it?". This is the Calculator agent.'

    @pytest.mark.asyncio
    async def test_invoke_joins_text(self, make_request):
        backend = ScriptedBackend({"Hello": ["Hi ", ToolStarted("calculate"), "there"]})
        assert await backend.invoke(make_request("Hello")) == "Hi there"

    @pytest.mark.asyncio
    async def test_invoke_failure(self, make_request):
        with pytest.raises(GenerationError):
            await ScriptedBackend(fail_on={"Hello"}).invoke(make_request("Hello"))
