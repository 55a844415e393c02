"""Graph nodes: the deciding agent and the NLQ tool runner.

The model speaks a small JSON action protocol:
    {"action": "<tool name>", "action_input": "<question for the tool>"}
    {"action": "Final Answer", "action_input": "<answer>"}
Any completion that is not such an action is taken as the final answer.
"""

import json
import logging
import re
from typing import Any, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.tools import BaseTool

from datachat.graph.state import AgentState

logger = logging.getLogger(__name__)

FINAL_ANSWER = "Final Answer"
MAX_ITERATIONS_OUTPUT = "Agent stopped due to max iterations."

AGENT_SYSTEM_PROMPT = """You are a specialized database interaction and data visualization chatbot. Your purpose is to answer questions using the data in the user's database and to provide data that can be visualized. Assume every question relates to the database. If a question clearly does not relate to the database, answer exactly: "I'm sorry, I don't know how to answer that."

You will:
- Query the database to retrieve the relevant information.
- Perform calculations (averages, sums, counts) on the data when the question needs them.
- Keep the text of your answer EXTREMELY concise: 1-3 simple sentences.
- Prefer returning data that can be shown as charts and tables over long explanations.
- For time-series data, include date/time fields and the relevant metrics; for categorical data, include the category fields and their values.
- For visualizations, always use the color format 'hsl(var(--chart-N))' where N is 1-5, never 'var(--color-X)'.
- If the requested information isn't available, tell the user.

Maintain a professional tone."""

TOOL_PROTOCOL_PROMPT = """You have access to one tool:

{tool_name}: {tool_description}

To use the tool, respond with ONLY this JSON object:
{{"action": "{tool_name}", "action_input": "<the question to ask the database>"}}

When you have enough information, respond with ONLY this JSON object:
{{"action": "{final_answer}", "action_input": "<your answer>"}}"""

OBSERVATION_PROMPT = """Tool result from {tool_name}:
{observation}

Use this result to continue. Respond with the JSON action format."""

FORCE_FINAL_PROMPT = """You have used the tool the maximum number of times. Respond now with your final answer using {{"action": "{final_answer}", "action_input": "..."}}."""

_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _load_object(text: str) -> Optional[dict[str, Any]]:
    cleaned = _JSON_FENCE_RE.sub("", (text or "").strip())
    candidates = [cleaned]
    match = _JSON_OBJECT_RE.search(cleaned)
    if match and match.group(0) != cleaned:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def parse_action(text: str) -> Optional[dict[str, Any]]:
    """Return {"action", "action_input"} when the completion is a protocol action."""
    data = _load_object(text)
    if not data or not isinstance(data.get("action"), str):
        return None
    action_input = data.get("action_input", "")
    return {"action": data["action"].strip(), "action_input": action_input}


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


async def agent_node(
    state: AgentState,
    *,
    llm: BaseChatModel,
    tool: BaseTool,
    max_iterations: int,
    system_prompt: str = AGENT_SYSTEM_PROMPT,
) -> dict[str, Any]:
    """Ask the model for the next action; stop after max_iterations tool calls."""
    iterations = state.get("iterations") or 0
    force_final = iterations >= max_iterations

    protocol = TOOL_PROTOCOL_PROMPT.format(
        tool_name=tool.name,
        tool_description=tool.description,
        final_answer=FINAL_ANSWER,
    )
    messages = [SystemMessage(content=f"{system_prompt}\n\n{protocol}")] + list(state["messages"])
    if force_final:
        messages.append(HumanMessage(content=FORCE_FINAL_PROMPT.format(final_answer=FINAL_ANSWER)))

    response = await llm.ainvoke(messages)
    text = response.content if isinstance(response.content, str) else str(response.content)
    action = parse_action(text)

    if action is None:
        logger.info("AGENT | plain completion taken as final answer")
        return {"messages": [AIMessage(content=text)], "pending_action": None, "output": text.strip()}

    if action["action"].lower() == FINAL_ANSWER.lower():
        logger.info("AGENT | final answer after %d tool call(s)", iterations)
        return {
            "messages": [AIMessage(content=text)],
            "pending_action": None,
            "output": _as_text(action["action_input"]).strip(),
        }

    if force_final:
        logger.warning("AGENT | tool requested after %d iterations, stopping", iterations)
        return {"messages": [AIMessage(content=text)], "pending_action": None, "output": MAX_ITERATIONS_OUTPUT}

    logger.info("AGENT | calling %s with %r", action["action"], action["action_input"])
    return {"messages": [AIMessage(content=text)], "pending_action": action}


async def tool_node(state: AgentState, *, tool: BaseTool) -> dict[str, Any]:
    """Run the requested tool and feed its observation back to the agent."""
    action = state.get("pending_action") or {}
    name = action.get("action", "")
    tool_input = _as_text(action.get("action_input", ""))

    if name == tool.name:
        observation = await tool.ainvoke(tool_input)
    else:
        observation = f"{name} is not a valid tool, try {tool.name}."

    observation = _as_text(observation)
    steps = list(state.get("intermediate_steps") or [])
    steps.append({"tool": name, "tool_input": tool_input, "observation": observation})
    return {
        "messages": [HumanMessage(content=OBSERVATION_PROMPT.format(tool_name=name, observation=observation))],
        "intermediate_steps": steps,
        "iterations": (state.get("iterations") or 0) + 1,
        "pending_action": None,
    }
