"""Build and run the per-request agent graph: agent -> tool -> agent ... -> END."""

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Literal, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.tools import BaseTool
from langgraph.graph import END, START, StateGraph

from datachat.graph.nodes import agent_node, tool_node
from datachat.graph.state import AgentState

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3


@dataclass
class AgentRun:
    output: str
    intermediate_steps: list[dict[str, Any]] = field(default_factory=list)


def _route_after_agent(state: AgentState) -> Literal["tool", "end"]:
    if state.get("pending_action"):
        return "tool"
    return "end"


def build_agent_graph(llm: BaseChatModel, tool: BaseTool, max_iterations: int = DEFAULT_MAX_ITERATIONS):
    """Compile a fresh agent graph bound to this request's tool."""
    builder = StateGraph(AgentState)

    builder.add_node("agent", partial(agent_node, llm=llm, tool=tool, max_iterations=max_iterations))
    builder.add_node("tool", partial(tool_node, tool=tool))

    builder.add_edge(START, "agent")
    builder.add_conditional_edges("agent", _route_after_agent, {"tool": "tool", "end": END})
    builder.add_edge("tool", "agent")

    return builder.compile()


async def run_agent(graph, input_text: str, chat_history: Optional[str] = None) -> AgentRun:
    """Invoke the graph once with fresh state."""
    messages = []
    if chat_history and chat_history.strip():
        messages.append(SystemMessage(content=f"Conversation history:\n{chat_history.strip()}"))
    messages.append(HumanMessage(content=input_text))

    final_state = await graph.ainvoke(
        {
            "messages": messages,
            "intermediate_steps": [],
            "iterations": 0,
            "pending_action": None,
            "output": None,
        }
    )
    return AgentRun(
        output=final_state.get("output") or "",
        intermediate_steps=list(final_state.get("intermediate_steps") or []),
    )
