"""
CampaignManager: sharing codes, coupon claiming and admin campaign setup.

Sub-state mapping:
    0 - branching (mint sharing code / ask for claimed code / start admin mode)
    1 - enable admin access
    2 - update available coupons (campaign already open)
    3 - set available coupons (campaign closed)
    4 - set coupon image
    5 - check claimed code
"""
import re
from typing import Any, Dict

from dietbot.api.schemas import InboundMessage
from dietbot.core import states as st
from dietbot.core.agent import Agent, END_STATE
from dietbot.images import client as images
from dietbot.intel.keywords import get_match, get_tokens
from dietbot.observability.logging import log
import dietbot.observability.metrics as metrics
from dietbot.outbound.formatter import OutboundMessage
from dietbot.settings import settings
import dietbot.store.campaign_keeper as keeper
import dietbot.store.profile_repo as profiles
from dietbot.utils.time import now_ms, parse_follow_time_ms

SHARING_CODE_RE = re.compile(r"[0-9]{6}")
INTEGER_RE = re.compile(r"[+-]?[0-9]+")

SKIP_KEYWORDS = ["no", "nope", "skip", "next"]
DECLINE_KEYWORDS = ["no", "nope", "n't"]

NO_IMAGE_TEXT = "NO IMAGE FOR COUPON YET"
COUPON_IMAGE_FORMAT = "png"


def _parse_int(text: str):
    t = (text or "").strip()
    if not INTEGER_RE.fullmatch(t):
        return None
    return int(t)


class CampaignManager(Agent):
    name = "CampaignManager"
    states = frozenset({st.INVITE_FRIEND, st.CLAIM_COUPON, st.MANAGE_CAMPAIGN})
    image_states = frozenset({4})

    def init(self) -> None:
        self.add_handler(0, self.branch_handler) \
            .add_handler(1, self.enable_admin_access) \
            .add_handler(2, self.update_coupon_number) \
            .add_handler(3, self.start_campaign) \
            .add_handler(4, self.set_coupon_image) \
            .add_handler(5, self.check_coupon)

    def _reply(self, msg: InboundMessage) -> OutboundMessage:
        return OutboundMessage(msg.userId, replyToken=msg.replyToken)

    def _end(self, msg: InboundMessage, *lines: str) -> int:
        fmt = self._reply(msg)
        for line in lines:
            fmt.append_text(line)
        self.publish(fmt)
        return END_STATE

    def _reject_claim(self, msg: InboundMessage, reason: str, *lines: str) -> int:
        log(event="claim_rejected", userId=msg.userId, reason=reason)
        try:
            metrics.increment_claim_rejected()
        except Exception:
            pass
        return self._end(msg, *lines)

    # -- state 0 -----------------------------------------------------------

    def branch_handler(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        if msg.state == st.INVITE_FRIEND:
            return self.invite_friend_handler(msg, scratch)
        if msg.state == st.CLAIM_COUPON:
            return self.claim_coupon_handler(msg, scratch)
        return self.campaign_manage_handler(msg, scratch)

    def invite_friend_handler(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        campaign = keeper.load_campaign()
        if not campaign.is_open:
            return self._end(msg, "Sorry, the campaign is not ongoing at this stage. "
                                  "Please keep an eye on this so that you won't miss it! ^_^")

        if keeper.get_claim_count() >= campaign.availableCoupon:
            return self._end(msg, "I am sorry that we do not have available coupons now. "
                                  "Please come earlier next time! ^_^")

        serial = keeper.next_coupon_serial()
        if serial > keeper.MAX_COUPON_SERIAL:
            log(event="sharing_codes_exhausted", userId=msg.userId, serial=serial)
            return self._end(msg, "I am sorry that we do not have available coupons now. "
                                  "Please come earlier next time! ^_^")

        code = keeper.format_sharing_code(serial)
        keeper.set_sharing_owner(code, msg.userId)
        try:
            metrics.increment_codes_minted()
        except Exception:
            pass
        log(event="sharing_code_minted", userId=msg.userId, serial=serial)
        return self._end(msg, "Thank you for promoting our service! ^_^",
                         f"This is your sharing code: {code}")

    def claim_coupon_handler(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        fmt = self._reply(msg)
        fmt.append_text("Great! What is your sharing code for the coupon? "
                        "Please input the 6 digit code only.")
        self.publish(fmt)
        return 5

    def campaign_manage_handler(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        profile = profiles.get_profile(msg.userId)
        if profile is None:
            return self._end(msg, "Sorry, we cannot verify your admin identity. "
                                  "Please do 'setting' first. Session cancelled.")

        fmt = self._reply(msg)
        if not profiles.is_admin(profile):
            fmt.append_text("You are not an admin user now. "
                            "If you want to enable your admin priviledge, please input your admin access code.")
            self.publish(fmt)
            return 1

        campaign = keeper.load_campaign()
        fmt.append_text("Hi admin user! ^_^")
        if campaign.is_open:
            fmt.append_text(f"The campaign is now open, and the number of available coupon is "
                            f"{campaign.availableCoupon}.") \
               .append_text("Do you want to update it? Tell me a number or say 'skip'.")
            self.publish(fmt)
            return 2

        fmt.append_text("The campaign is not open now. Do you want to start it now?") \
           .append_text("Input a positive number as the number of available coupons "
                        "for this campaign, or say 'no'.")
        self.publish(fmt)
        return 3

    # -- state 1 -----------------------------------------------------------

    def enable_admin_access(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        text = msg.textContent or ""
        if text != settings.ADMIN_ACCESS_CODE:
            log(event="admin_access_denied", userId=msg.userId)
            return self._end(msg, "Incorrect access code. Access denied.")

        self.publish(self._reply(msg).append_text("Admin mode has been enabled for you."))

        profile = profiles.get_profile(msg.userId) or {}
        profile["isAdmin"] = True
        profiles.store_profile(msg.userId, profile)
        log(event="admin_access_granted", userId=msg.userId)

        # Same-process re-entry: the returned sub-state is what gets committed
        return self.campaign_manage_handler(msg, scratch)

    # -- state 2 -----------------------------------------------------------

    def update_coupon_number(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        text = (msg.textContent or "").lower()
        fmt = self._reply(msg)

        number = _parse_int(text)
        if number is not None:
            if number <= 0:
                keeper.close_campaign()
                log(event="campaign_closed", userId=msg.userId)
                return self._end(msg, "Set available coupon to non-positive, campaign stopped.")
            keeper.set_available_coupon(number)
            log(event="campaign_coupons_updated", userId=msg.userId, availableCoupon=number)
            fmt.append_text(f"Set available coupon to {number}.")
        elif get_match(get_tokens(text), SKIP_KEYWORDS) is not None:
            fmt.append_text("Update coupon number skipped.")
        else:
            self.reject_user_input(msg, "Please tell me the updated available coupon number, "
                                        "or ask me to skip this part explicitly.")
            return 2

        fmt.append_text("Now do you want to update the image of the coupon? "
                        "If yes, send an image to me. Otherwise, please say 'CANCEL'.")
        self.publish(fmt)
        return 4

    # -- state 3 -----------------------------------------------------------

    def start_campaign(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        text = msg.textContent or ""

        number = _parse_int(text)
        if number is not None:
            if number <= 0:
                self.reject_user_input(msg, "Either input a positive number, or say you do not want "
                                            "to start a campaign explicitly.")
                return 3
            start = now_ms()
            keeper.open_campaign(number, start)
            log(event="campaign_opened", userId=msg.userId, availableCoupon=number, startMs=start)
            fmt = self._reply(msg)
            fmt.append_text(f"Start campaign with a total of {number} coupon(s).") \
               .append_text("Now please set the image of the coupon. You can say 'CANCEL' to skip.")
            self.publish(fmt)
            return 4

        if get_match(get_tokens(text), DECLINE_KEYWORDS) is not None:
            return self._end(msg, "OK, cancelling to start a campaign.")

        self.reject_user_input(msg, "I don't understand what you have said.")
        return 3

    # -- state 4 -----------------------------------------------------------

    def set_coupon_image(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        if msg.type != "image":
            self.reject_user_input(msg, "Please send me a photo or say 'CANCEL'.")
            return 4

        try:
            data = images.fetch_bytes(msg.imageContent or "")
        except images.ImageFetchError as e:
            log(event="coupon_image_failed", userId=msg.userId, error=str(e)[:300])
            return self._end(msg, "ERROR in getting the image, session cancelled")

        keeper.set_coupon_image(images.encode_image(data))
        log(event="coupon_image_set", userId=msg.userId, bytes=len(data))
        return self._end(msg, "Set image of the coupon succeeded.",
                         "Leaving admin mode for campaign management.")

    # -- state 5 -----------------------------------------------------------

    def check_coupon(self, msg: InboundMessage, scratch: Dict[str, Any]) -> int:
        user_id = msg.userId
        code = (msg.textContent or "").strip()

        # Malformed codes end the session instead of re-prompting
        if not SHARING_CODE_RE.fullmatch(code):
            return self._reject_claim(msg, "bad_format",
                                      "Sorry, the format for the coupon claimed is invalid",
                                      "The correct format should be 'code <6-digit number>'.")

        campaign = keeper.load_campaign()
        if not campaign.is_open:
            return self._reject_claim(msg, "campaign_closed",
                                      "Sorry, the campaign is not ongoing at this stage. "
                                      "Please stay tuned on this :)")

        if campaign.supply_exhausted:
            return self._reject_claim(msg, "supply_exhausted",
                                      "Sorry, but all the available coupons are now distributed. "
                                      "Please be earlier next time ~")

        parent_user_id = keeper.get_sharing_owner(code)
        if parent_user_id is None:
            return self._reject_claim(msg, "unknown_code",
                                      "Well, this is not a valid sharing Id.",
                                      "Please double check. Session cancelled.")

        profile = profiles.get_profile(user_id)
        if profile is None:
            return self._reject_claim(msg, "no_profile",
                                      "Well, I don't have your personal information yet, "
                                      "so you cannot claim the coupon now.",
                                      "Please do so by 'setting'. Session cancelled.")

        if "parentUserId" in profile:
            return self._reject_claim(msg, "already_claimed",
                                      "Well, one user can only claim the coupon using 'code' once.",
                                      "But you can share this chatbot with your friends to "
                                      "get more coupons!")

        if parent_user_id == user_id:
            return self._reject_claim(msg, "self_referral",
                                      "Well, seems that this code is issued as your sharing code, "
                                      "so you cannot self-claim it :(")

        follow_ms = parse_follow_time_ms(profile.get("followTime"))
        if follow_ms is None:
            log(event="follow_time_unparseable", userId=user_id)
        # Start instant compared at whole-second precision, like followTime
        start_ms = campaign.campaignStartInstant // 1000 * 1000
        if follow_ms is None or follow_ms < start_ms:
            return self._reject_claim(msg, "followed_before_campaign",
                                      "Sorry, you are not a user following us after the campaign start.")

        # The coupon file is in place before a unit is taken
        encoded = keeper.get_coupon_image()
        uri = images.publish_for_viewing(user_id, encoded, COUPON_IMAGE_FORMAT) if encoded else None

        if not keeper.claim_unit(campaign.availableCoupon):
            return self._reject_claim(msg, "supply_exhausted",
                                      "Sorry, but all the available coupons are now distributed. "
                                      "Please be earlier next time ~")

        profile["parentUserId"] = parent_user_id
        profiles.store_profile(user_id, profile)
        try:
            metrics.increment_claim_granted()
        except Exception:
            pass
        log(event="coupon_claimed", userId=user_id, parentUserId=parent_user_id,
            mode=settings.CAMPAIGN_CLAIM_MODE)

        fmt = self._reply(msg).append_text("Congratulations! This is the coupon you claimed:")
        self._append_coupon(fmt, uri)
        self.publish(fmt)

        fmt = OutboundMessage(parent_user_id)
        fmt.append_text("Hey, one more user follows our chatbot by your promotion ~") \
           .append_text("This coupon is rewarded to you:")
        self._append_coupon(fmt, uri)
        self.publish(fmt)
        return END_STATE

    @staticmethod
    def _append_coupon(fmt: OutboundMessage, uri) -> None:
        if uri:
            fmt.append_image(uri, uri)
        else:
            fmt.append_text(NO_IMAGE_TEXT)
