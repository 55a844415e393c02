"""Agent API request/response schemas."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentRequest(BaseModel):
    """Request body for POST /api/v1/agent."""

    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1, description="Natural language question about the database")
    user_id: str = Field(..., alias="userId", min_length=1)
    chat_id: Optional[str] = Field(None, alias="chatId")
    connection_id: Optional[str] = Field(None, alias="connectionId")
    context: Optional[str] = Field(None, description="Prior conversation text passed as chat history")


class AgentResponse(BaseModel):
    """Response from POST /api/v1/agent."""

    model_config = ConfigDict(populate_by_name=True)

    answer: str
    visualization: Optional[dict[str, Any]] = None
    table_data: Optional[dict[str, Any]] = Field(None, alias="tableData")
    sql_query: Optional[str] = Field(None, alias="sqlQuery")
