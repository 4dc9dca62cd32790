# Top-level conversation states (assigned outside the agents)

# Interaction Surface: no session in progress
IDLE = "Idle"

# Interaction Surface: referral code issuance
INVITE_FRIEND = "InviteFriend"

# Interaction Surface: referral code redemption
CLAIM_COUPON = "ClaimCoupon"

# Interaction Surface: admin campaign configuration
MANAGE_CAMPAIGN = "ManageCampaign"

# Interaction Surface: diet modes served by agents outside this service
RECOMMENDATION_REQUEST = "RecommendationRequest"
INITIAL_INPUT = "InitialInput"
FEEDBACK = "Feedback"

ALL_STATES = frozenset({
    IDLE,
    INVITE_FRIEND,
    CLAIM_COUPON,
    MANAGE_CAMPAIGN,
    RECOMMENDATION_REQUEST,
    INITIAL_INPUT,
    FEEDBACK,
})

# Sub-state sentinel returned by a handler to end its agent session
END_STATE = -1


def is_valid_state(name) -> bool:
    return name in ALL_STATES
