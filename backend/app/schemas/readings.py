"""
Reading charge schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from backend.app.models.reading_enums import SpreadType
from backend.app.schemas.credits import UnlockedAchievementResponse


class SpreadCostResponse(BaseModel):
    spread_type: SpreadType
    advanced_style: bool
    extended_question: bool
    cost: int


class ChargeReadingRequest(BaseModel):
    """Schema for charging a reading."""
    spread_type: SpreadType
    advanced_style: bool = False
    extended_question: bool = False


class ChargeReadingResponse(BaseModel):
    cost: int
    balance: int
    transaction_id: Optional[int] = None
    total_readings: int
    achievements: List[UnlockedAchievementResponse] = []


class FollowUpCostResponse(BaseModel):
    session_question_index: int
    cost: int


class ChargeFollowUpRequest(BaseModel):
    """Schema for charging a follow-up question."""
    session_question_index: int = Field(..., ge=0)
    answer_cached: bool = False


class ChargeFollowUpResponse(BaseModel):
    cost: int
    balance: int
    transaction_id: Optional[int] = None
    total_questions_asked: int
