# =============================================================================
# app/routers/events.py - Routing/Bid Event Intake
# =============================================================================
# The routing and bidding workflow lives outside this service. It reports its
# changes here (or enqueues workers.tasks.process_routing_event) so the
# affected party gets notified. Admin only.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, status

from app.auth import require_admin
from app.dependencies import FanoutDep
from core.models.actor import Actor
from core.models.events import RoutingEvent

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/routing", status_code=status.HTTP_202_ACCEPTED)
async def routing_event(
    event: RoutingEvent,
    fanout: FanoutDep,
    actor: Actor = Depends(require_admin),
):
    """
    Notify the vendor or business owner about a routing or bid change.

    Invalid bid transitions are accepted but produce no notification.
    """
    logger.info(f"Routing event {event.type.value} for project {event.project_id} from {actor.id}")
    notifications = await fanout.on_routing_or_bid_change(event)
    return {
        "success": True,
        "notified": [str(n.user_id) for n in notifications],
    }
