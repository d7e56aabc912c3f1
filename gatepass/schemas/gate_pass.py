"""
Pydantic schemas for gate pass requests, decisions and verification.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Category = Literal["medical", "family", "academic", "personal", "emergency", "other"]
Priority = Literal["low", "medium", "high", "emergency"]


class EmergencyContactIn(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    phone: str = Field(pattern=r"^[6-9]\d{9}$")
    relation: str = Field(min_length=2, max_length=30)


class GatePassCreate(BaseModel):
    reason: str = Field(min_length=10, max_length=500)
    destination: str = Field(min_length=3, max_length=200)
    departure_time: datetime
    return_time: datetime
    category: Category
    priority: Priority = "medium"
    emergency_contact: Optional[EmergencyContactIn] = None


class DecisionIn(BaseModel):
    action: Literal["approve", "reject"]
    comments: Optional[str] = Field(default=None, max_length=300)


class VerifyIn(BaseModel):
    security_code: Optional[str] = Field(default=None, max_length=16)
    action: Literal["exit", "entry"] = "exit"


class ScanIn(BaseModel):
    token: str = Field(min_length=1)
    action: Literal["exit", "entry"] = "exit"


class ApprovalOut(BaseModel):
    status: str
    timestamp: Optional[datetime] = None
    comments: Optional[str] = None
    approved_by: Optional[str] = None


class HistoryOut(BaseModel):
    seq: int
    action: str
    actor_id: Optional[str] = None
    comments: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GatePassOut(BaseModel):
    id: str
    pass_code: str
    unique_token: str
    student_id: str
    mentor_id: str
    hod_id: str
    reason: str
    destination: str
    category: str
    priority: str
    emergency_contact: Optional[dict] = None
    departure_time: datetime
    return_time: datetime
    status: str
    mentor_approval: ApprovalOut
    hod_approval: ApprovalOut
    is_used: bool
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    entry_time: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    security_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    history: list[HistoryOut] = []

    model_config = ConfigDict(from_attributes=True)


class QrOut(BaseModel):
    pass_id: str
    pass_code: str
    token: str
    expires_at: Optional[datetime] = None
    image_status: str
    image: Optional[str] = None
