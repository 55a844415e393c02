"""LangGraph state schema for the per-request tool-calling agent."""

from typing import Any, Optional

from langgraph.graph import MessagesState


class AgentState(MessagesState):
    """Extends MessagesState with the tool loop bookkeeping."""

    intermediate_steps: list[dict[str, Any]]  # {tool, tool_input, observation}
    iterations: int
    pending_action: Optional[dict[str, Any]]
    output: Optional[str]
