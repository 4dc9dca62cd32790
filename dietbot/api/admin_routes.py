from fastapi import APIRouter, Depends

from dietbot.api.auth import require_admin
from dietbot.core.runtime import get_dispatcher
from dietbot.settings import settings
from dietbot.store.session_repo import load_session
import dietbot.store.campaign_keeper as keeper
import dietbot.observability.metrics as metrics

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/campaign")
def get_campaign_snapshot(_=Depends(require_admin)):
    """Current campaign counters as stored by the keeper."""
    c = keeper.load_campaign()
    return {
        "open": c.is_open,
        "availableCoupon": c.availableCoupon,
        "claimCount": c.claimCount,
        "remaining": max(0, c.availableCoupon - c.claimCount),
        "campaignStartInstant": c.campaignStartInstant,
        "currentCouponSerial": c.currentCouponSerial,
        "hasCouponImage": keeper.get_coupon_image() is not None,
        "claimMode": settings.CAMPAIGN_CLAIM_MODE,
    }


@router.get("/session/{user_id}")
def get_session_snapshot(user_id: str, _=Depends(require_admin)):
    s = load_session(user_id)
    return {
        "userId": s.userId,
        "topLevelState": s.topLevelState,
        "agent": s.agent,
        "subState": s.subState,
        "scratchKeys": sorted(s.scratch.keys()),
        "lastUpdatedAtEpoch": s.lastUpdatedAtEpoch,
    }


@router.get("/agents")
def get_agents(_=Depends(require_admin)):
    d = get_dispatcher()
    return {
        "ownedStates": d.owned_states(),
        "agents": [
            {
                "name": a.name,
                "states": sorted(a.states),
                "subStates": a.handler_states(),
                "imageSubStates": sorted(a.image_states),
            }
            for a in d.agents()
        ],
    }


@router.get("/metrics")
def get_metrics(_=Depends(require_admin)):
    return metrics.get_metrics_snapshot()
