"""
Tests for the set access decision engine.

Covers every tier of the resolution order plus id validation.
"""
from contextlib import contextmanager
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from flashdeck.features.access.service import (
    AccessError,
    AccessErrorCode,
    DenialReason,
    SetAccessService,
    SetType,
    parse_positive_int,
)


@pytest.fixture
def access():
    return SetAccessService()


@pytest.fixture
def people(seed):
    return {
        "owner": seed.user("Owner"),
        "member": seed.user("Member"),
        "admin": seed.admin("Root"),
    }


def test_free_set_open_to_anonymous_and_members(access, seed, people):
    free_id = seed.set(people["owner"], price="0")

    for caller in (None, people["member"], people["admin"]):
        verdict = access.check_access(free_id, caller)
        assert verdict.has_access is True
        assert verdict.set_type is SetType.FREE


def test_free_set_does_not_need_the_caller_to_exist(access, seed, people):
    free_id = seed.set(people["owner"], price="0")

    verdict = access.check_access(free_id, 999)
    assert verdict.set_type is SetType.FREE


@pytest.mark.parametrize(
    "price,subscriber_only,reason",
    [
        ("9.99", False, DenialReason.PREMIUM),
        ("0", True, DenialReason.SUBSCRIBER_ONLY),
        ("4.50", True, DenialReason.SUBSCRIBER_ONLY),
    ],
)
def test_anonymous_denied_on_gated_sets(access, seed, people, price, subscriber_only, reason):
    set_id = seed.set(people["owner"], price=price, is_subscriber_only=subscriber_only)

    verdict = access.check_access(set_id)
    assert verdict.has_access is False
    assert verdict.reason is reason
    assert verdict.price == Decimal(price)
    assert verdict.message


@pytest.mark.parametrize("price,subscriber_only", [("9.99", False), ("0", True)])
def test_owner_bypass(access, seed, people, price, subscriber_only):
    set_id = seed.set(people["owner"], price=price, is_subscriber_only=subscriber_only)

    verdict = access.check_access(set_id, people["owner"])
    assert verdict.has_access is True
    assert verdict.set_type is SetType.OWNED


def test_admin_bypass(access, seed, people):
    set_id = seed.set(people["owner"], price="19.00", is_subscriber_only=True)

    verdict = access.check_access(set_id, people["admin"])
    assert verdict.has_access is True
    assert verdict.set_type is SetType.ADMIN


def test_purchase_grants_access_on_every_call(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99")
    assert access.check_access(set_id, people["member"]).has_access is False

    seed.purchase(people["member"], set_id)

    for _ in range(3):
        verdict = access.check_access(set_id, people["member"])
        assert verdict.set_type is SetType.PURCHASED


def test_purchase_does_not_unlock_subscriber_only_set(access, seed, people):
    set_id = seed.set(people["owner"], price="0", is_subscriber_only=True)
    seed.purchase(people["member"], set_id)

    verdict = access.check_access(set_id, people["member"])
    assert verdict.has_access is False
    assert verdict.reason is DenialReason.SUBSCRIBER_ONLY


@pytest.mark.parametrize(
    "purchased,subscribed,expected",
    [
        (True, False, SetType.PURCHASED),
        (False, True, SetType.SUBSCRIBED),
        (True, True, SetType.PURCHASED),
    ],
)
def test_priced_subscriber_only_set_opens_to_either_path(access, seed, people, purchased, subscribed, expected):
    set_id = seed.set(people["owner"], price="9.99", is_subscriber_only=True)
    if purchased:
        seed.purchase(people["member"], set_id)
    if subscribed:
        seed.subscription(people["member"], people["owner"])

    verdict = access.check_access(set_id, people["member"])
    assert verdict.has_access is True
    assert verdict.set_type is expected


def test_priced_subscriber_only_set_without_either_is_denied(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99", is_subscriber_only=True)

    verdict = access.check_access(set_id, people["member"])
    assert verdict.has_access is False
    assert verdict.reason is DenialReason.SUBSCRIBER_ONLY
    assert verdict.set_type is SetType.SUBSCRIBER
    assert verdict.price == Decimal("9.99")


def test_subscription_to_educator_unlocks_subscriber_only_sets(access, seed, people):
    first = seed.set(people["owner"], is_subscriber_only=True)
    second = seed.set(people["owner"], is_subscriber_only=True)
    seed.subscription(people["member"], people["owner"])

    assert access.check_access(first, people["member"]).set_type is SetType.SUBSCRIBED
    assert access.check_access(second, people["member"]).set_type is SetType.SUBSCRIBED


def test_subscription_to_other_educator_does_not_unlock(access, seed, people):
    other = seed.user("Other")
    set_id = seed.set(people["owner"], is_subscriber_only=True)
    seed.subscription(people["member"], other)

    assert access.check_access(set_id, people["member"]).has_access is False


def test_premium_set_not_unlocked_by_subscription(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99")
    seed.subscription(people["member"], people["owner"])

    verdict = access.check_access(set_id, people["member"])
    assert verdict.reason is DenialReason.PREMIUM


def test_hidden_set_raises_even_for_owner_and_admin(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99", hidden=True)
    seed.purchase(people["member"], set_id)

    for caller in (None, people["owner"], people["admin"], people["member"]):
        with pytest.raises(AccessError) as exc_info:
            access.check_access(set_id, caller)
        assert exc_info.value.reason is AccessErrorCode.SET_HIDDEN
        # Public shape is indistinguishable from a missing set
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Set not found"


def test_missing_set(access, db):
    with pytest.raises(AccessError) as exc_info:
        access.check_access(12345)
    assert exc_info.value.reason is AccessErrorCode.SET_NOT_FOUND


@pytest.mark.parametrize("bad", [None, 0, -3, "abc", "1.5", True, 2.5, ""])
def test_invalid_set_id(access, bad):
    with pytest.raises(AccessError) as exc_info:
        access.check_access(bad)
    assert exc_info.value.reason is AccessErrorCode.INVALID_SET_ID
    assert exc_info.value.status_code == 400


def test_invalid_user_id(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99")
    with pytest.raises(AccessError) as exc_info:
        access.check_access(set_id, "nope")
    assert exc_info.value.reason is AccessErrorCode.INVALID_USER_ID


@pytest.mark.parametrize("set_id", ["9" * 25, 2 ** 63, str(2 ** 63)])
def test_out_of_range_set_id_is_invalid(access, db, set_id):
    with pytest.raises(AccessError) as exc_info:
        access.check_access(set_id)
    assert exc_info.value.reason is AccessErrorCode.INVALID_SET_ID
    assert exc_info.value.status_code == 400


def test_out_of_range_user_id_is_invalid(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99")
    with pytest.raises(AccessError) as exc_info:
        access.check_access(set_id, "9" * 25)
    assert exc_info.value.reason is AccessErrorCode.INVALID_USER_ID


def test_unknown_user_on_gated_set(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99")
    with pytest.raises(AccessError) as exc_info:
        access.check_access(set_id, 4242)
    assert exc_info.value.reason is AccessErrorCode.USER_NOT_FOUND


def test_string_ids_are_accepted(access, seed, people):
    set_id = seed.set(people["owner"], price="9.99")
    verdict = access.check_access(str(set_id), str(people["owner"]))
    assert verdict.set_type is SetType.OWNED


def test_verdict_dict_shape(access, seed, people):
    set_id = seed.set(people["owner"], title="Kanji", price="9.99")

    denied = access.check_access(set_id).to_dict()
    assert denied == {
        "hasAccess": False,
        "setType": "premium",
        "setTitle": "Kanji",
        "setId": set_id,
        "reason": "PREMIUM",
        "message": "This is a premium set. Purchase to access.",
        "price": 9.99,
    }

    granted = access.check_access(set_id, people["owner"]).to_dict()
    assert granted == {"hasAccess": True, "setType": "owned", "setTitle": "Kanji", "setId": set_id}


def test_store_failures_propagate():
    session = MagicMock()
    session.execute.side_effect = RuntimeError("db down")

    @contextmanager
    def broken_scope():
        yield session

    service = SetAccessService(session_scope=broken_scope)
    with pytest.raises(RuntimeError):
        service.check_access(1, 2)


def test_parse_positive_int():
    assert parse_positive_int(5) == 5
    assert parse_positive_int(" 7 ") == 7
    assert parse_positive_int(3.0) == 3
    assert parse_positive_int(False) is None
    assert parse_positive_int("0") is None
    assert parse_positive_int(2 ** 63 - 1) == 2 ** 63 - 1
    assert parse_positive_int(2 ** 63) is None
    assert parse_positive_int("9" * 25) is None
    assert parse_positive_int("²") is None
    assert parse_positive_int(float("inf")) is None
