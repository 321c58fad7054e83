"""
Relay status endpoints.

Read-only view of the relays registered in this process.
"""

from fastapi import APIRouter, Depends

from app.api.dependencies import get_relay_registry
from app.api.models import RelayListResponse, RelayResponse
from app.relay.registry import RelayRegistry

router = APIRouter(prefix="/v1/relays", tags=["relays"])


@router.get("", response_model=RelayListResponse)
async def list_relays(
    registry: RelayRegistry = Depends(get_relay_registry),
) -> RelayListResponse:
    """
    List all relays with their role, environment, models and statistics.
    """
    relays = [RelayResponse(**relay.describe()) for relay in registry.list()]
    return RelayListResponse(relays=relays, total=len(relays))


@router.get("/{service_name}", response_model=RelayResponse)
async def get_relay(
    service_name: str,
    registry: RelayRegistry = Depends(get_relay_registry),
) -> RelayResponse:
    """
    Get one relay by service name.

    Raises:
        RelayNotFoundError: Mapped to 404 by the application.
    """
    return RelayResponse(**registry.lookup(service_name).describe())
