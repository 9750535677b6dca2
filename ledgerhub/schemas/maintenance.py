"""
Maintenance Schemas
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class CleanupTriggerRequest(BaseModel):
    # Destructive runs must be asked for explicitly
    dry_run: bool = True


class CleanupTriggerResponse(BaseModel):
    success: bool
    message: str
    summary: Optional[Dict[str, Any]] = None


class CronJobStatus(BaseModel):
    running: bool
    scheduled: bool
    next_run: Optional[str] = None
    trigger: Optional[str] = None
