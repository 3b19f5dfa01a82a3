"""Tool registry for the agent stream server."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Dict

from langchain_core.tools import BaseTool

from .calculator_tool import calculate
from .time_tool import get_current_time


def get_registered_tools() -> Sequence[BaseTool]:
    """Return all tools available to agents."""

    return (
        get_current_time,
        calculate,
    )


def get_tools_by_name() -> Dict[str, BaseTool]:
    """Convenience mapping for tool lookup by name."""

    return {tool.name: tool for tool in get_registered_tools()}


__all__ = [
    "get_registered_tools",
    "get_tools_by_name",
]
