from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: datetime
    version: str
