"""Request/response schemas for chat and one-shot analysis."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class HistoryTurn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: Optional[str] = None
    capability: Optional[str] = None
    # Older clients send the capability as "role"
    role: Optional[str] = None
    history: Optional[list[HistoryTurn]] = None


class ChatResponse(BaseModel):
    status: str = "success"
    response: str
    capability: str
    role: str
    sessionActive: bool = True


class ChatEndedResponse(BaseModel):
    status: str = "success"
    response: Optional[str] = None
    message: Optional[str] = None
    capability: Optional[str] = None
    sessionEnded: bool = True


class SessionStatus(BaseModel):
    hasSession: bool
    message: str
    capability: Optional[str] = None
    messageCount: Optional[int] = None
    createdAt: Optional[datetime] = None
    lastUsedAt: Optional[datetime] = None


class AnalysisRequest(BaseModel):
    repoPath: Optional[str] = None
    query: Optional[str] = None


class AnalysisResponse(BaseModel):
    status: str = "success"
    message: str
    reportPath: str
    reportContent: str


class ReportList(BaseModel):
    reports: list[dict[str, Any]] = Field(default_factory=list)
