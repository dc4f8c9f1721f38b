from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ConsultationEntry(BaseModel):
    id: str
    timestamp: str
    query: str
    response: str
    category: Optional[str] = None


class ConsultRequest(BaseModel):
    """Request body for POST /consultations."""

    query: str
