from dataclasses import asdict
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..agent.maintenance import sweep_streaks
from ..agent.services import AgentServices, get_services, utc_now

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/streaks")
async def streaks(services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    alerts = await sweep_streaks(services.store, services.notifier, utc_now(), services.settings.default_timezone)
    return {"atRisk": [asdict(alert) for alert in alerts]}


@router.post("/outbox/drain")
async def drain_outbox(services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    processed = await services.outbox.drain()
    return {
        "processed": processed,
        "pending": len(await services.outbox.list()),
        "deadLetters": len(services.outbox.dead_letters),
    }
