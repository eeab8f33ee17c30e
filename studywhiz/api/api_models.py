from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    role: str
    content: str


class AiChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())

    message: Optional[str] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")
    history: Optional[List[HistoryMessage]] = None
    is_grading_request: Optional[bool] = Field(default=None, alias="isGradingRequest")
    is_unified: Optional[bool] = Field(default=None, alias="isUnified")
    language: Optional[str] = None
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")
    user_context: Optional[Dict[str, Any]] = Field(default=None, alias="userContext")
    subject: Optional[str] = None
    exercise_content: Optional[str] = None
    student_answer: Optional[str] = None
    correct_answer: Optional[str] = None
    mode: Optional[str] = None
    reveal_final_answer: Optional[bool] = None


class AiChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    content: str
    model_id: str = Field(alias="modelId")
    model_used: str = Field(alias="modelUsed")
    provider: str
    is_exercise: bool = Field(alias="isExercise")
    timestamp: str


class ErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    error: str
    timestamp: str
    status_code: int = Field(alias="statusCode")
