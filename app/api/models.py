"""
API models (DTOs) for response serialization.

These are separate from the relay's domain models and describe what the
status endpoints return.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RelayStatisticsResponse(BaseModel):
    """Counters of one relay since process start."""

    published: int = 0
    filtered: int = 0
    publish_failures: int = 0
    received: int = 0
    discarded: int = 0
    rejected: int = 0
    handler_failures: int = 0


class RelayResponse(BaseModel):
    """Response model for a single relay."""

    service_name: Optional[str]
    role: str = Field(..., description="unconfigured, server or client")
    environment: Optional[str]
    project_id: Optional[str]
    models_to_broadcast: List[str] = Field(default_factory=list)
    models_to_subscribe: List[str] = Field(default_factory=list)
    filter_count: int = 0
    statistics: RelayStatisticsResponse


class RelayListResponse(BaseModel):
    """Response model for the relay listing."""

    relays: List[RelayResponse]
    total: int


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    version: str
    timestamp: datetime
    relays: Dict[str, int] = Field(
        default_factory=dict, description="Relay count per role"
    )


class RecordListResponse(BaseModel):
    """Response model for the records of one model."""

    model_name: str
    records: List[Dict[str, Any]]
    total: int

    model_config = {"protected_namespaces": ()}


class DeleteResponse(BaseModel):
    """Response model for a record deletion."""

    model_name: str
    id: str
    deleted: bool

    model_config = {"protected_namespaces": ()}
