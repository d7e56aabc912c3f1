"""
Pydantic schemas for in-app notifications and delivery status.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class NotificationOut(BaseModel):
    id: str
    kind: str
    pass_id: Optional[str] = None
    priority: str
    title: str
    message: str
    payload: Optional[dict] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationDeliveryOut(BaseModel):
    id: str
    channel: str
    target: Optional[str] = None
    status: str
    attempts: int
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    sent_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
