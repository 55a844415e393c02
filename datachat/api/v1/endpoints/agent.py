"""Agent API endpoint: natural-language question in, answer plus chart/table suggestions out."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from datachat.api.dependencies import get_orchestrator, get_prisma
from datachat.schemas.agent import AgentRequest, AgentResponse
from datachat.services.agent_orchestrator import AgentOrchestrator
from datachat.services.connection_store import fetch_connection_for_chat, user_owns_chat, user_owns_connection
from datachat.services.errors import Unauthorized

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])


@router.post("", response_model=AgentResponse, response_model_by_alias=True)
async def post_agent(
    body: AgentRequest,
    prisma=Depends(get_prisma),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> AgentResponse:
    """
    Answer a question about the user's database.
    Chat and connection ownership are checked before the agent runs.
    """
    connection_id = body.connection_id
    try:
        if body.chat_id and not await user_owns_chat(prisma, user_id=body.user_id, chat_id=body.chat_id):
            raise Unauthorized("Chat not found for this user")

        if connection_id and not await user_owns_connection(
            prisma, user_id=body.user_id, connection_id=connection_id
        ):
            raise Unauthorized("Connection not found for this user")

        if body.chat_id and not connection_id:
            connection_id = await fetch_connection_for_chat(prisma, user_id=body.user_id, chat_id=body.chat_id)
            if not connection_id:
                raise HTTPException(status_code=400, detail="No database connection associated with this chat")

        result = await orchestrator.handle_question(
            body.question,
            body.user_id,
            chat_id=body.chat_id,
            connection_id=connection_id,
            context=body.context,
        )
    except Unauthorized as e:
        logger.warning("Agent API ownership check failed for user=%s: %s", body.user_id, e)
        raise HTTPException(status_code=403, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Agent API failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to process question")

    return AgentResponse(
        answer=result["answer"],
        visualization=result.get("visualization"),
        table_data=result.get("tableData"),
        sql_query=result.get("sqlQuery"),
    )
