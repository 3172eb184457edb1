"""API tests for /api/sets: listing, gated viewing, writes and cache eviction."""
from sqlalchemy import select

from flashdeck.core.database import get_db_session, view_history


def _card(front="Q", back="A"):
    return {"front": front, "back": back}


def test_list_is_public_and_camel_case(client, seed):
    owner = seed.user("Ada")
    seed.set(owner, title="Free", price="0", tag_names=("math",))

    resp = client.get("/api/sets")
    assert resp.status_code == 200
    body = resp.json()
    item = body["items"][0]
    assert item["title"] == "Free"
    assert item["educatorName"] == "Ada"
    assert item["category"] == "Uncategorized"
    assert item["isSubscriberOnly"] is False
    assert item["tags"] == ["math"]
    assert "cards" not in item
    assert body["pagination"]["totalPages"] == 1
    assert resp.headers["Cache-Control"].startswith("public")
    assert resp.headers["ETag"].startswith('W/"')


def test_list_is_served_from_cache_until_a_write(client, seed, cache, auth_header):
    owner = seed.user("Owner")
    seed.set(owner, title="First")

    assert client.get("/api/sets").json()["pagination"]["total"] == 1
    # Inserted behind the service's back: cached page stays stale
    seed.set(owner, title="Sneaky")
    assert client.get("/api/sets").json()["pagination"]["total"] == 1

    resp = client.post(
        "/api/sets",
        json={"title": "Third", "description": "d", "cards": [_card()]},
        headers=auth_header(owner),
    )
    assert resp.status_code == 201
    assert not any(k.startswith("Set:") for k in cache._data)

    assert client.get("/api/sets").json()["pagination"]["total"] == 3


def test_sort_presets_and_filters(client, seed):
    owner = seed.user("Owner")
    languages = seed.category("Languages")
    seed.set(owner, title="A free", price="0", category_id=languages)
    seed.set(owner, title="B premium", price="3.00", featured=True)
    seed.set(owner, title="C sub", is_subscriber_only=True, tag_names=("exam",))

    titles = lambda resp: [i["title"] for i in resp.json()["items"]]

    assert titles(client.get("/api/sets", params={"sortOrder": "oldest"})) == ["A free", "B premium", "C sub"]
    assert titles(client.get("/api/sets", params={"sortOrder": "featured"}))[0] == "B premium"
    assert titles(client.get("/api/sets", params={"setType": "free"})) == ["A free"]
    assert titles(client.get("/api/sets", params={"setType": "premium"})) == ["B premium"]
    assert titles(client.get("/api/sets", params={"setType": "subscriber"})) == ["C sub"]
    assert titles(client.get("/api/sets", params={"category": "languages"})) == ["A free"]
    assert titles(client.get("/api/sets", params={"tag": "EXAM"})) == ["C sub"]
    assert titles(client.get("/api/sets", params={"search": "prem"})) == ["B premium"]


def test_unknown_category_is_404(client, seed):
    resp = client.get("/api/sets", params={"category": "nope"})
    assert resp.status_code == 404


def test_invalid_sort_field_is_400(client, db):
    resp = client.get("/api/sets", params={"sortBy": "passwordHash"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_sort_field"


def test_liked_list_requires_auth_and_is_per_user(client, seed, auth_header):
    owner = seed.user("Owner")
    fan = seed.user("Fan")
    liked = seed.set(owner, title="Liked")
    seed.set(owner, title="Other")

    assert client.get("/api/sets", params={"liked": "true"}).status_code == 401

    assert client.post(f"/api/sets/{liked}/like", headers=auth_header(fan)).json()["liked"] is True
    resp = client.get("/api/sets", params={"liked": "true"}, headers=auth_header(fan))
    assert [i["title"] for i in resp.json()["items"]] == ["Liked"]
    assert resp.headers["Cache-Control"].startswith("private")

    other = client.get("/api/sets", params={"liked": "true"}, headers=auth_header(owner))
    assert other.json()["items"] == []


def test_view_free_set_returns_cards(client, seed, auth_header):
    owner = seed.user("Owner")
    resp = client.post(
        "/api/sets",
        json={"title": "Deck", "description": "d", "cards": [_card("1+1", "2"), _card("2+2", "4")]},
        headers=auth_header(owner),
    )
    set_id = resp.json()["id"]

    view = client.get(f"/api/sets/{set_id}")
    assert view.status_code == 200
    body = view.json()
    assert body["locked"] is False
    assert body["access"]["setType"] == "free"
    assert [c["front"] for c in body["cards"]] == ["1+1", "2+2"]
    assert view.headers["Cache-Control"] == "private, no-store"


def test_view_gated_set_returns_locked_payload(client, seed, auth_header):
    owner = seed.user("Owner")
    member = seed.user("Member")
    created = client.post(
        "/api/sets",
        json={"title": "Pro", "description": "d", "price": "9.99", "cards": [_card(), _card()]},
        headers=auth_header(owner),
    ).json()

    resp = client.get(f"/api/sets/{created['id']}", headers=auth_header(member))
    assert resp.status_code == 200
    body = resp.json()
    assert body["locked"] is True
    assert body["cards"] == []
    assert body["cardCount"] == 2
    assert body["price"] == 9.99
    assert body["access"]["reason"] == "PREMIUM"

    owner_view = client.get(f"/api/sets/{created['id']}", headers=auth_header(owner)).json()
    assert owner_view["locked"] is False
    assert len(owner_view["cards"]) == 2


def test_view_records_history_for_signed_in_callers(client, seed, auth_header):
    owner = seed.user("Owner")
    reader = seed.user("Reader")
    set_id = seed.set(owner)

    client.get(f"/api/sets/{set_id}")
    client.get(f"/api/sets/{set_id}", headers=auth_header(reader))

    with get_db_session() as session:
        rows = session.execute(select(view_history.c.user_id)).all()
    assert [r.user_id for r in rows] == [reader]


def test_token_for_removed_account_views_like_anonymous(client, seed, auth_header):
    owner = seed.user("Owner")
    gated = seed.set(owner, price="9.99")
    free = seed.set(owner)
    ghost = auth_header(4242)

    locked = client.get(f"/api/sets/{gated}", headers=ghost)
    assert locked.status_code == 200
    assert locked.json()["locked"] is True
    assert locked.json()["access"]["reason"] == "PREMIUM"

    opened = client.get(f"/api/sets/{free}", headers=ghost)
    assert opened.status_code == 200
    assert opened.json()["locked"] is False

    with get_db_session() as session:
        assert session.execute(select(view_history.c.id)).all() == []


def test_hidden_and_missing_sets_look_the_same(client, seed, auth_header):
    owner = seed.user("Owner")
    hidden = seed.set(owner, hidden=True)

    missing = client.get("/api/sets/999999")
    concealed = client.get(f"/api/sets/{hidden}", headers=auth_header(owner))

    assert missing.status_code == concealed.status_code == 404
    assert missing.json()["error"]["code"] == concealed.json()["error"]["code"] == "not_found"
    assert missing.json()["error"]["message"] == concealed.json()["error"]["message"] == "Set not found"


def test_malformed_set_id_is_400(client, db):
    resp = client.get("/api/sets/not-a-number")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"

    for too_big in ("9" * 25, str(2 ** 63)):
        for path in (f"/api/sets/{too_big}", f"/api/sets/{too_big}/access", f"/api/sets/{too_big}/summary"):
            resp = client.get(path)
            assert resp.status_code == 400, path
            assert resp.json()["error"]["code"] == "validation_error"


def test_far_out_listing_params_never_500(client, seed):
    seed.set(seed.user("Owner"))

    page = client.get("/api/sets", params={"page": str(10 ** 20)})
    assert page.status_code == 200
    assert page.json()["items"] == []
    assert page.json()["pagination"]["total"] == 1

    educator = client.get("/api/sets", params={"educatorId": str(10 ** 20)})
    assert educator.status_code == 400


def test_access_endpoint(client, seed, auth_header):
    owner = seed.user("Owner")
    set_id = seed.set(owner, is_subscriber_only=True)

    anon = client.get(f"/api/sets/{set_id}/access").json()
    assert anon["hasAccess"] is False
    assert anon["reason"] == "SUBSCRIBER_ONLY"

    mine = client.get(f"/api/sets/{set_id}/access", headers=auth_header(owner)).json()
    assert mine == {"hasAccess": True, "setType": "owned", "setTitle": "Set", "setId": set_id}


def test_create_requires_auth(client, db):
    resp = client.post("/api/sets", json={"title": "t", "description": "d"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_create_validates_body(client, seed, auth_header):
    owner = seed.user("Owner")
    resp = client.post(
        "/api/sets",
        json={"title": "t", "description": "d", "price": -1},
        headers=auth_header(owner),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"

    resp = client.post(
        "/api/sets",
        json={"title": "t", "description": "d", "cards": [{"front": "only front"}]},
        headers=auth_header(owner),
    )
    assert resp.status_code == 400


def test_update_by_owner_and_admin_only(client, seed, auth_header):
    owner = seed.user("Owner")
    stranger = seed.user("Stranger")
    admin = seed.admin()
    set_id = seed.set(owner, title="Old")

    denied = client.patch(f"/api/sets/{set_id}", json={"title": "Hacked"}, headers=auth_header(stranger))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "forbidden"

    ok = client.patch(
        f"/api/sets/{set_id}",
        json={"title": "New", "tags": ["Bio", " bio ", "Cells"]},
        headers=auth_header(owner),
    )
    assert ok.status_code == 200

    summary = client.get(f"/api/sets/{set_id}/summary").json()
    assert summary["title"] == "New"
    assert sorted(summary["tags"]) == ["bio", "cells"]

    by_admin = client.patch(f"/api/sets/{set_id}", json={"featured": True}, headers=auth_header(admin))
    assert by_admin.status_code == 200


def test_summary_reflects_update_despite_cache(client, seed, auth_header):
    owner = seed.user("Owner")
    set_id = seed.set(owner, title="Before")

    assert client.get(f"/api/sets/{set_id}/summary").json()["title"] == "Before"
    client.patch(f"/api/sets/{set_id}", json={"title": "After"}, headers=auth_header(owner))
    assert client.get(f"/api/sets/{set_id}/summary").json()["title"] == "After"


def test_toggle_hidden_removes_from_listing(client, seed, auth_header):
    owner = seed.user("Owner")
    set_id = seed.set(owner)
    assert client.get("/api/sets").json()["pagination"]["total"] == 1

    resp = client.post(f"/api/sets/{set_id}/toggle-hidden", headers=auth_header(owner))
    assert resp.json() == {"id": set_id, "hidden": True}
    assert client.get("/api/sets").json()["pagination"]["total"] == 0
    assert client.get(f"/api/sets/{set_id}").status_code == 404


def test_stranger_cannot_see_hidden_set_exists_via_writes(client, seed, auth_header):
    owner = seed.user("Owner")
    stranger = seed.user("Stranger")
    set_id = seed.set(owner, hidden=True)

    resp = client.delete(f"/api/sets/{set_id}", headers=auth_header(stranger))
    assert resp.status_code == 404


def test_delete_set(client, seed, auth_header):
    owner = seed.user("Owner")
    buyer = seed.user("Buyer")
    set_id = seed.set(owner, price="2.00")
    seed.purchase(buyer, set_id)

    assert client.delete(f"/api/sets/{set_id}", headers=auth_header(owner)).json()["deleted"] is True
    assert client.get(f"/api/sets/{set_id}").status_code == 404
    assert client.get("/api/purchases", headers=auth_header(buyer)).json()["items"] == []


def test_like_toggle_and_count(client, seed, auth_header):
    owner = seed.user("Owner")
    fan = seed.user("Fan")
    set_id = seed.set(owner)

    assert client.get(f"/api/sets/{set_id}/likes").json()["likes"] == 0
    assert client.post(f"/api/sets/{set_id}/like", headers=auth_header(fan)).json() == {
        "setId": set_id,
        "liked": True,
        "likes": 1,
    }
    assert client.get(f"/api/sets/{set_id}/likes").json()["likes"] == 1
    assert client.post(f"/api/sets/{set_id}/like", headers=auth_header(fan)).json()["liked"] is False
    assert client.get(f"/api/sets/{set_id}/likes").json()["likes"] == 0
