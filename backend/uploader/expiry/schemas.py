"""Pydantic schemas for scheduled deletions of temporal uploads."""
from datetime import datetime

from pydantic import BaseModel, Field


class ScheduledDeletion(BaseModel):
    """A stored key scheduled for deletion."""
    id: int = Field(..., description="Schedule entry ID")
    key: str = Field(..., description="Storage key to delete")
    backend: str = Field(..., description="Storage backend name")
    due_at: datetime = Field(..., description="When the key expires (UTC)")
    done: bool = Field(default=False, description="Whether the key was deleted")
