"""FastAPI dependencies for Prisma, settings, the chat model and the orchestrator."""

from functools import lru_cache

from fastapi import Depends, Request
from langchain_core.language_models.chat_models import BaseChatModel

from datachat.core.config import Settings, get_settings
from datachat.core.llm import get_langchain_llm
from datachat.services.agent_orchestrator import AgentOrchestrator


def get_prisma(request: Request):
    """FastAPI dependency: returns the Prisma client for the metadata store."""
    return request.app.state.prisma


@lru_cache
def get_cached_settings() -> Settings:
    return get_settings()


def get_llm(settings: Settings = Depends(get_cached_settings)) -> BaseChatModel:
    """FastAPI dependency: chat model used by generators, the agent and suggestions."""
    return get_langchain_llm(settings)


def get_orchestrator(
    prisma=Depends(get_prisma),
    settings: Settings = Depends(get_cached_settings),
    llm: BaseChatModel = Depends(get_llm),
) -> AgentOrchestrator:
    """FastAPI dependency: a new orchestrator per request."""
    return AgentOrchestrator(prisma, settings, llm)
