"""HTTP chat-completion client behind every model call in the service.

SQL generation, the tool-calling agent and the chart/table suggestions all
talk to LLAMA_URL through ChatModelViaHTTP. Two wire shapes are supported:
OpenAI-compatible servers take a messages array, llama-style servers take a
single message plus system_prompt. Replies in either shape are accepted.
"""

import asyncio
import logging
from typing import Any, List, Optional

import httpx
from langchain_core.callbacks import AsyncCallbackManagerForLLMRun, CallbackManagerForLLMRun
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from datachat.core.config import Settings

logger = logging.getLogger(__name__)

CHAT_TIMEOUT = 60.0
MAX_TOKENS = 2048
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
REPLY_KEYS = ("content", "message", "text", "response", "output")


def is_openai_endpoint(url: str) -> bool:
    return "/v1/chat/completions" in url or "openai" in url.lower()


def fold_history(messages: list[dict[str, str]]) -> dict[str, str]:
    """Collapse a messages array into the llama-style {message, system_prompt} body.

    System messages are joined into system_prompt. When more than one turn
    remains, the earlier ones are written out above the last message.
    """
    system_prompt = "\n\n".join(
        m["content"].strip() for m in messages if m.get("role") == "system" and (m.get("content") or "").strip()
    )
    turns = [
        (m.get("role") or "user", m["content"].strip())
        for m in messages
        if m.get("role") != "system" and (m.get("content") or "").strip()
    ]

    if not turns:
        message = ""
    elif len(turns) == 1:
        message = turns[0][1]
    else:
        earlier = "\n".join(f"{role}: {text}" for role, text in turns[:-1])
        message = f"Previous conversation:\n{earlier}\n\nCurrent message: {turns[-1][1]}"
    return {"message": message, "system_prompt": system_prompt or DEFAULT_SYSTEM_PROMPT}


def build_payload(messages: list[dict[str, str]], url: str, temperature: float, seed: int) -> dict[str, Any]:
    # temperature 0 also pins top_p so repeated SQL generations match
    sampling = {"temperature": temperature, "top_p": 0.0 if temperature == 0.0 else 0.95, "seed": seed}
    if is_openai_endpoint(url):
        return {"model": "default", "messages": messages, "max_tokens": MAX_TOKENS, **sampling}
    return {**fold_history(messages), **sampling}


def parse_reply(data: dict[str, Any]) -> str:
    """Assistant text from an OpenAI-style or flat JSON reply."""
    choices = data.get("choices") or []
    if choices:
        first = choices[0]
        message = first.get("message") or first
        content = message.get("content") if isinstance(message, dict) else None
        if content is not None:
            return content.strip() if isinstance(content, str) else str(content)

    for key in REPLY_KEYS:
        if key in data:
            value = data[key]
            return value.strip() if isinstance(value, str) else str(value)

    raise ValueError(f"Could not extract assistant content from response: {list(data.keys())}")


async def chat(
    messages: list[dict[str, str]],
    url: str,
    temperature: float = 0.0,
    seed: int = 42,
    timeout: float = CHAT_TIMEOUT,
) -> str:
    """POST messages to the chat endpoint and return the reply text.

    Raises httpx.HTTPError on transport or status failures and ValueError
    when the reply carries no recognizable content.
    """
    payload = build_payload(messages, url, temperature, seed)
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(url, json=payload)
        response.raise_for_status()
        return parse_reply(response.json())


def to_role_dicts(messages: List[BaseMessage]) -> list[dict[str, str]]:
    roles = {SystemMessage: "system", AIMessage: "assistant"}
    return [
        {
            "role": next((r for cls, r in roles.items() if isinstance(m, cls)), "user"),
            "content": m.content if isinstance(m.content, str) else str(m.content),
        }
        for m in messages
    ]


class ChatModelViaHTTP(BaseChatModel):
    """LangChain chat model over chat()."""

    url: str = Field(description="Full URL of the chat API")
    timeout: float = Field(default=CHAT_TIMEOUT, description="Request timeout in seconds")
    temperature: float = Field(default=0.0)

    @property
    def _llm_type(self) -> str:
        return "chat_via_http"

    def _generate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Optional[CallbackManagerForLLMRun] = None,
        **kwargs: Any,
    ) -> ChatResult:
        return asyncio.run(self._agenerate(messages, stop, None, **kwargs))

    async def _agenerate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Optional[AsyncCallbackManagerForLLMRun] = None,
        **kwargs: Any,
    ) -> ChatResult:
        text = await chat(to_role_dicts(messages), self.url, temperature=self.temperature, timeout=self.timeout)
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=text))])


def get_langchain_llm(settings: Settings) -> BaseChatModel:
    """Chat model shared by the generators, the agent and the suggestion calls."""
    return ChatModelViaHTTP(
        url=settings.LLAMA_URL,
        timeout=CHAT_TIMEOUT,
        temperature=getattr(settings, "LLM_TEMPERATURE", 0.0),
    )
