from unittest.mock import patch

import pytest

from conftest import image, text
from dietbot.core import states as st
from dietbot.core.agent import END_STATE
from dietbot.core.dispatcher import GENERIC_FAILURE_REPLY
from dietbot.images.client import ImageFetchError, encode_image
import dietbot.store.campaign_keeper as keeper
import dietbot.store.profile_repo as profiles
from dietbot.store.session_repo import load_session
from dietbot.utils.time import format_follow_time, now_ms

ADMIN = "U-admin"


def _make_admin(user_id=ADMIN):
    profiles.store_profile(user_id, {"isAdmin": True, "followTime": "2020-01-01 00:00:00"})


def _follow_now(user_id):
    profiles.store_profile(user_id, {"followTime": format_follow_time(now_ms() + 1000)})


# -- state 0: branching -----------------------------------------------------

def test_branch_routes_on_top_level_state(dispatcher, publisher):
    res = dispatcher.dispatch(text("U1", "I want to claim", state=st.CLAIM_COUPON))
    assert res.subState == 5
    assert "6 digit code" in publisher.texts_for("U1")[0]


def test_keyword_picks_claim_path(dispatcher, publisher):
    res = dispatcher.dispatch(text("U1", "I have a coupon code!"))
    assert res.agent == "CampaignManager"
    assert res.subState == 5


def test_invite_rejected_when_campaign_closed(dispatcher, publisher):
    res = dispatcher.dispatch(text("U1", "invite", state=st.INVITE_FRIEND))
    assert res.subState == END_STATE
    assert "not ongoing" in publisher.texts_for("U1")[0]
    assert keeper.get_sharing_owner("000000") is None


def test_invite_rejected_when_supply_exhausted(dispatcher, publisher):
    keeper.open_campaign(1, now_ms())
    keeper.increment_claim_count()
    dispatcher.dispatch(text("U1", "invite", state=st.INVITE_FRIEND))
    assert "do not have available coupons" in publisher.texts_for("U1")[0]


def test_invite_mints_sequential_codes(dispatcher, publisher):
    keeper.open_campaign(3, now_ms())
    dispatcher.dispatch(text("U1", "invite", state=st.INVITE_FRIEND))
    dispatcher.dispatch(text("U2", "invite", state=st.INVITE_FRIEND))

    assert publisher.texts_for("U1")[-1] == "This is your sharing code: 000000"
    assert publisher.texts_for("U2")[-1] == "This is your sharing code: 000001"
    assert keeper.get_sharing_owner("000000") == "U1"
    assert keeper.get_sharing_owner("000001") == "U2"
    assert load_session("U1").topLevelState == st.IDLE


def test_invite_refused_once_codes_run_out(dispatcher, publisher, fake_redis):
    keeper.open_campaign(3, now_ms())
    fake_redis.set(keeper.K_SERIAL, keeper.MAX_COUPON_SERIAL + 1)
    dispatcher.dispatch(text("U1", "invite", state=st.INVITE_FRIEND))
    assert "do not have available coupons" in publisher.texts_for("U1")[0]


# -- campaign management ----------------------------------------------------

def test_manage_without_profile_terminates(dispatcher, publisher):
    res = dispatcher.dispatch(text("U1", "campaign", state=st.MANAGE_CAMPAIGN))
    assert res.subState == END_STATE
    assert "cannot verify your admin identity" in publisher.texts_for("U1")[0]


def test_manage_non_admin_asks_for_access_code(dispatcher, publisher):
    profiles.store_profile("U1", {"followTime": "2020-01-01 00:00:00"})
    res = dispatcher.dispatch(text("U1", "campaign", state=st.MANAGE_CAMPAIGN))
    assert res.subState == 1


def test_wrong_access_code_denied(dispatcher, publisher):
    profiles.store_profile("U1", {"followTime": "2020-01-01 00:00:00"})
    dispatcher.dispatch(text("U1", "campaign", state=st.MANAGE_CAMPAIGN))
    res = dispatcher.dispatch(text("U1", "i am sung kim!!"))
    assert res.subState == END_STATE
    assert publisher.texts_for("U1")[-1] == "Incorrect access code. Access denied."
    assert not profiles.is_admin(profiles.get_profile("U1"))


def test_access_code_enables_admin_and_reenters_manage(dispatcher, publisher):
    profiles.store_profile("U1", {"followTime": "2020-01-01 00:00:00"})
    dispatcher.dispatch(text("U1", "campaign", state=st.MANAGE_CAMPAIGN))
    res = dispatcher.dispatch(text("U1", "I am Sung Kim!!"))

    assert profiles.is_admin(profiles.get_profile("U1"))
    # campaign closed -> offer to open it, committed directly from state 1
    assert res.subState == 3
    assert load_session("U1").subState == 3
    texts = publisher.texts_for("U1")
    assert "Admin mode has been enabled for you." in texts
    assert "Hi admin user! ^_^" in texts


@patch("dietbot.core.dispatcher.log")
def test_admin_reentry_is_a_single_dispatch(mock_log, dispatcher):
    profiles.store_profile("U1", {})
    dispatcher.dispatch(text("U1", "campaign", state=st.MANAGE_CAMPAIGN))
    mock_log.reset_mock()
    dispatcher.dispatch(text("U1", "I am Sung Kim!!"))
    events = [c.kwargs.get("event") for c in mock_log.call_args_list]
    assert events.count("message_dispatched") == 1


def test_admin_with_open_campaign_goes_to_update(dispatcher, publisher):
    _make_admin()
    keeper.open_campaign(4, now_ms())
    res = dispatcher.dispatch(text(ADMIN, "campaign", state=st.MANAGE_CAMPAIGN))
    assert res.subState == 2
    assert any("available coupon is 4" in t for t in publisher.texts_for(ADMIN))


# -- state 3: open campaign -------------------------------------------------

def test_open_campaign_resets_counter_and_stamps_start(dispatcher, fake_redis):
    _make_admin()
    keeper.increment_claim_count()
    fake_redis.set(keeper.K_START_MS, 1)

    dispatcher.dispatch(text(ADMIN, "campaign", state=st.MANAGE_CAMPAIGN))
    before = now_ms()
    res = dispatcher.dispatch(text(ADMIN, "10"))

    c = keeper.load_campaign()
    assert res.subState == 4
    assert c.availableCoupon == 10
    assert c.claimCount == 0
    assert c.campaignStartInstant >= before


def test_open_campaign_declined(dispatcher, publisher):
    _make_admin()
    dispatcher.dispatch(text(ADMIN, "campaign", state=st.MANAGE_CAMPAIGN))
    res = dispatcher.dispatch(text(ADMIN, "I don't want to"))
    assert res.subState == END_STATE
    assert publisher.texts_for(ADMIN)[-1] == "OK, cancelling to start a campaign."
    assert not keeper.load_campaign().is_open


@pytest.mark.parametrize("reply", ["0", "-4", "maybe later", "ten"])
def test_open_campaign_reprompts_on_bad_input(dispatcher, publisher, reply):
    _make_admin()
    dispatcher.dispatch(text(ADMIN, "campaign", state=st.MANAGE_CAMPAIGN))
    res = dispatcher.dispatch(text(ADMIN, reply))
    assert res.subState == 3
    assert "Sorry, I cannot understand your input." in publisher.texts_for(ADMIN)
    assert not keeper.load_campaign().is_open


# -- state 2: update open campaign ------------------------------------------

def _admin_at_update(dispatcher):
    _make_admin()
    keeper.open_campaign(4, now_ms())
    dispatcher.dispatch(text(ADMIN, "campaign", state=st.MANAGE_CAMPAIGN))


def test_update_count(dispatcher, publisher):
    _admin_at_update(dispatcher)
    res = dispatcher.dispatch(text(ADMIN, "7"))
    assert res.subState == 4
    assert keeper.load_campaign().availableCoupon == 7
    assert "Set available coupon to 7." in publisher.texts_for(ADMIN)


def test_update_does_not_reset_counter(dispatcher):
    _admin_at_update(dispatcher)
    keeper.increment_claim_count()
    dispatcher.dispatch(text(ADMIN, "7"))
    assert keeper.get_claim_count() == 1


def test_update_skip(dispatcher, publisher):
    _admin_at_update(dispatcher)
    res = dispatcher.dispatch(text(ADMIN, "Skip"))
    assert res.subState == 4
    assert keeper.load_campaign().availableCoupon == 4
    assert "Update coupon number skipped." in publisher.texts_for(ADMIN)


@pytest.mark.parametrize("reply", ["0", "-1"])
def test_update_non_positive_closes_campaign(dispatcher, publisher, reply):
    _admin_at_update(dispatcher)
    res = dispatcher.dispatch(text(ADMIN, reply))
    assert res.subState == END_STATE
    assert not keeper.load_campaign().is_open
    assert publisher.texts_for(ADMIN)[-1] == "Set available coupon to non-positive, campaign stopped."

    publisher.clear()
    dispatcher.dispatch(text("U2", "invite", state=st.INVITE_FRIEND))
    assert "not ongoing" in publisher.texts_for("U2")[0]


def test_update_reprompts_on_garbage(dispatcher):
    _admin_at_update(dispatcher)
    res = dispatcher.dispatch(text(ADMIN, "lots of them"))
    assert res.subState == 2
    assert keeper.load_campaign().availableCoupon == 4


# -- state 4: coupon image --------------------------------------------------

def _admin_at_image(dispatcher):
    _admin_at_update(dispatcher)
    dispatcher.dispatch(text(ADMIN, "skip"))
    assert load_session(ADMIN).subState == 4


def test_image_state_rejects_text(dispatcher, publisher):
    _admin_at_image(dispatcher)
    res = dispatcher.dispatch(text(ADMIN, "here it is"))
    assert res.subState == 4
    assert "Please send me a photo or say 'CANCEL'." in publisher.texts_for(ADMIN)


def test_image_state_cancel(dispatcher):
    _admin_at_image(dispatcher)
    res = dispatcher.dispatch(text(ADMIN, "CANCEL"))
    assert res.reason == "cancelled"
    assert keeper.get_coupon_image() is None


@patch("dietbot.images.client.fetch_bytes", return_value=b"\x89PNG-bytes")
def test_image_is_stored_encoded(mock_fetch, dispatcher, publisher):
    _admin_at_image(dispatcher)
    res = dispatcher.dispatch(image(ADMIN, "http://img.test/c.png"))

    mock_fetch.assert_called_once_with("http://img.test/c.png")
    assert res.subState == END_STATE
    assert keeper.get_coupon_image() == encode_image(b"\x89PNG-bytes")
    assert "Set image of the coupon succeeded." in publisher.texts_for(ADMIN)
    assert load_session(ADMIN).topLevelState == st.IDLE


@patch("dietbot.images.client.fetch_bytes", side_effect=ImageFetchError("timeout"))
def test_image_fetch_failure_terminates(mock_fetch, dispatcher, publisher):
    _admin_at_image(dispatcher)
    res = dispatcher.dispatch(image(ADMIN))
    assert res.subState == END_STATE
    assert publisher.texts_for(ADMIN)[-1] == "ERROR in getting the image, session cancelled"
    assert keeper.get_coupon_image() is None

    # a second image is not taken as a late retry
    res = dispatcher.dispatch(image(ADMIN))
    assert not res.dispatched
    assert mock_fetch.call_count == 1


# -- state 5: claim ---------------------------------------------------------

def _open_with_code(owner="U-owner", count=2):
    keeper.open_campaign(count, now_ms())
    keeper.set_sharing_owner("000000", owner)


def _claim(dispatcher, user_id, code):
    dispatcher.dispatch(text(user_id, "claim", state=st.CLAIM_COUPON))
    return dispatcher.dispatch(text(user_id, code))


@pytest.mark.parametrize("code", ["12345", "1234567", "abcdef", "12 345", "１２３４５６"])
def test_malformed_code_terminates_session(dispatcher, publisher, code):
    _open_with_code()
    _follow_now("U1")
    res = _claim(dispatcher, "U1", code)
    assert res.subState == END_STATE
    assert "format for the coupon claimed is invalid" in publisher.texts_for("U1")[1]
    assert load_session("U1").topLevelState == st.IDLE


def test_claim_rejected_when_closed(dispatcher, publisher):
    keeper.set_sharing_owner("000000", "U-owner")
    _follow_now("U1")
    res = _claim(dispatcher, "U1", "000000")
    assert res.subState == END_STATE
    assert "not ongoing" in publisher.texts_for("U1")[-1]


def test_claim_rejected_when_supply_exhausted(dispatcher, publisher):
    _open_with_code(count=1)
    keeper.increment_claim_count()
    _follow_now("U1")
    _claim(dispatcher, "U1", "000000")
    assert "all the available coupons are now distributed" in publisher.texts_for("U1")[-1]


def test_claim_rejected_for_unknown_code(dispatcher, publisher):
    _open_with_code()
    _follow_now("U1")
    _claim(dispatcher, "U1", "123456")
    assert publisher.texts_for("U1")[-2] == "Well, this is not a valid sharing Id."


def test_claim_rejected_without_profile(dispatcher, publisher):
    _open_with_code()
    _claim(dispatcher, "U1", "000000")
    assert "don't have your personal information" in publisher.texts_for("U1")[-2]


def test_claim_rejected_when_already_claimed(dispatcher, publisher):
    _open_with_code()
    profiles.store_profile("U1", {"followTime": format_follow_time(now_ms() + 1000), "parentUserId": "U-x"})
    _claim(dispatcher, "U1", "000000")
    assert "only claim the coupon using 'code' once" in publisher.texts_for("U1")[-2]
    assert keeper.get_claim_count() == 0


def test_self_referral_rejected(dispatcher, publisher):
    _open_with_code(owner="U1")
    _follow_now("U1")
    _claim(dispatcher, "U1", "000000")
    assert "cannot self-claim" in publisher.texts_for("U1")[-1]
    assert "parentUserId" not in profiles.get_profile("U1")


def test_pre_campaign_follower_rejected(dispatcher, publisher):
    _open_with_code()
    profiles.store_profile("U1", {"followTime": "2001-01-01 00:00:00"})
    _claim(dispatcher, "U1", "000000")
    assert "not a user following us after the campaign start" in publisher.texts_for("U1")[-1]
    assert keeper.get_claim_count() == 0


def test_unparseable_follow_time_is_not_eligible(dispatcher, publisher):
    _open_with_code()
    profiles.store_profile("U1", {"followTime": "yesterday"})
    res = _claim(dispatcher, "U1", "000000")
    assert res.subState == END_STATE
    assert "not a user following us after the campaign start" in publisher.texts_for("U1")[-1]


def test_successful_claim_with_image(dispatcher, publisher, coupon_dir):
    _open_with_code(owner="U-owner")
    keeper.set_coupon_image(encode_image(b"png-bytes"))
    _follow_now("U1")

    res = _claim(dispatcher, "U1", "000000")
    assert res.subState == END_STATE
    assert keeper.get_claim_count() == 1
    assert profiles.get_profile("U1")["parentUserId"] == "U-owner"

    claimant = publisher.for_user("U1")[-1]
    referrer = publisher.for_user("U-owner")[-1]
    assert claimant.texts() == ["Congratulations! This is the coupon you claimed:"]
    img = claimant.messages[-1]
    assert img["type"] == "image"
    assert img["originalContentUrl"].startswith("http://bot.test/coupons/")
    assert referrer.messages[-1] == img
    assert len(list(coupon_dir.iterdir())) == 1


def test_claim_lost_to_atomic_limit_leaves_profile_untouched(dispatcher, publisher):
    _open_with_code(count=1)
    _follow_now("U1")
    with patch("dietbot.store.campaign_keeper.claim_unit", return_value=False):
        res = _claim(dispatcher, "U1", "000000")
    assert res.subState == END_STATE
    assert "parentUserId" not in profiles.get_profile("U1")
    assert "all the available coupons are now distributed" in publisher.texts_for("U1")[-1]


@pytest.mark.parametrize("user_id", ["B/x", "../escaped"])
def test_claim_by_path_like_user_id(dispatcher, publisher, coupon_dir, user_id):
    _open_with_code(owner="U-owner")
    keeper.set_coupon_image(encode_image(b"png-bytes"))
    _follow_now(user_id)

    res = _claim(dispatcher, user_id, "000000")
    assert res.subState == END_STATE
    assert keeper.get_claim_count() == 1
    assert profiles.get_profile(user_id)["parentUserId"] == "U-owner"
    assert publisher.for_user("U-owner")[-1].messages[-1]["type"] == "image"
    assert list(coupon_dir.parent.iterdir()) == [coupon_dir]


def test_coupon_file_failure_leaves_claim_uncommitted(dispatcher, publisher):
    _open_with_code(owner="U-owner")
    keeper.set_coupon_image(encode_image(b"png-bytes"))
    _follow_now("U1")

    with patch("dietbot.images.client.publish_for_viewing", side_effect=OSError("disk full")):
        res = _claim(dispatcher, "U1", "000000")
    assert res.reason == "handler_failed"
    assert publisher.texts_for("U1")[-1] == GENERIC_FAILURE_REPLY
    assert keeper.get_claim_count() == 0
    assert "parentUserId" not in profiles.get_profile("U1")
    assert publisher.for_user("U-owner") == []

    res = _claim(dispatcher, "U1", "000000")
    assert res.subState == END_STATE
    assert keeper.get_claim_count() == 1
