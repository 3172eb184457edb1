"""Tests for the list query compiler."""
from unittest.mock import MagicMock

import pytest

from flashdeck.core.database import sets, tags
from flashdeck.core.errors import InvalidSortFieldError, ValidationError
from flashdeck.features.pagination.service import (
    JoinFilter,
    paginate,
    resolve_page_request,
    text_search_filter,
)
from flashdeck.features.sets.service import SET_LIST_CONFIG, TAGS_JOIN


@pytest.fixture
def catalogue(seed):
    owner = seed.user("Owner")
    ids = [
        seed.set(owner, title=f"Set {i:02d}", price="0" if i % 2 else "5.00", tag_names=("python", "basics"))
        for i in range(1, 8)
    ]
    return owner, ids


def test_defaults_and_clamping():
    req = resolve_page_request(SET_LIST_CONFIG, {})
    assert (req.page, req.limit, req.offset) == (1, 12, 0)
    assert (req.sort_field, req.sort_order) == ("featured", "DESC")

    req = resolve_page_request(SET_LIST_CONFIG, {"page": "3", "limit": "1000", "sortOrder": "asc"})
    assert req.limit == SET_LIST_CONFIG.max_limit
    assert req.offset == 2 * SET_LIST_CONFIG.max_limit
    assert req.sort_order == "ASC"


@pytest.mark.parametrize("page,limit", [("0", "0"), ("-2", "-5"), ("abc", "xyz")])
def test_bad_numbers_fall_back_to_defaults(page, limit):
    req = resolve_page_request(SET_LIST_CONFIG, {"page": page, "limit": limit})
    assert req.page == 1
    assert req.limit == SET_LIST_CONFIG.default_limit


def test_camel_case_sort_field_is_translated():
    req = resolve_page_request(SET_LIST_CONFIG, {"sortBy": "createdAt"})
    assert req.sort_field == "created_at"


def test_invalid_sort_order_rejected():
    with pytest.raises(ValidationError):
        resolve_page_request(SET_LIST_CONFIG, {"sortOrder": "sideways"})


def test_sort_allow_list_enforced_before_any_query():
    session_scope = MagicMock()

    with pytest.raises(InvalidSortFieldError) as exc_info:
        paginate(SET_LIST_CONFIG, {"sortBy": "password_hash"}, session_scope=session_scope)

    assert exc_info.value.status_code == 400
    assert exc_info.value.field == "password_hash"
    session_scope.assert_not_called()


def test_pagination_metadata(catalogue):
    result = paginate(SET_LIST_CONFIG, {"limit": "3", "page": "3", "sortBy": "title", "sortOrder": "ASC"})

    assert result.pagination.total == 7
    assert result.pagination.total_pages == 3
    assert result.pagination.has_more is False
    assert [row["title"] for row in result.items] == ["Set 07"]


def test_has_more_on_first_page(catalogue):
    result = paginate(SET_LIST_CONFIG, {"limit": "3"})
    assert result.pagination.has_more is True
    assert len(result.items) == 3


def test_pages_are_deterministic(catalogue):
    query = {"limit": "4", "page": "1", "sortBy": "featured"}
    first = paginate(SET_LIST_CONFIG, query)
    second = paginate(SET_LIST_CONFIG, query)

    assert [r["id"] for r in first.items] == [r["id"] for r in second.items]
    assert first.pagination.total == second.pagination.total


def test_ties_break_on_primary_key(catalogue):
    _, ids = catalogue
    # Every row has featured == False, so order is by id
    page_one = paginate(SET_LIST_CONFIG, {"limit": "4"})
    page_two = paginate(SET_LIST_CONFIG, {"limit": "4", "page": "2"})
    assert [r["id"] for r in page_one.items + page_two.items] == sorted(ids)


def test_distinct_count_under_many_to_many_join(catalogue):
    # Each set carries two tags, so a naive join would double-count
    result = paginate(
        SET_LIST_CONFIG,
        {"limit": "50"},
        join_filters=[JoinFilter(TAGS_JOIN, tags.c.name.in_(["python", "basics"]))],
    )
    assert result.pagination.total == 7
    assert len(result.items) == 7
    assert len({r["id"] for r in result.items}) == 7


def test_joins_are_nested_into_rows(seed):
    owner = seed.user("Grace")
    category = seed.category("Languages")
    seed.set(owner, title="Spanish", category_id=category, tag_names=("spanish", "verbs"))

    row = paginate(SET_LIST_CONFIG, {}).items[0]

    assert row["educator"] == {"id": owner, "name": "Grace", "image": None}
    assert row["category"] == {"id": category, "name": "Languages"}
    assert sorted(t["name"] for t in row["tags"]) == ["spanish", "verbs"]


def test_missing_association_is_none(seed):
    owner = seed.user("Grace")
    seed.set(owner)
    row = paginate(SET_LIST_CONFIG, {}).items[0]
    assert row["category"] is None
    assert row["tags"] == []


def test_base_filter_excludes_hidden(seed):
    owner = seed.user("Owner")
    seed.set(owner, title="visible")
    seed.set(owner, title="secret", hidden=True)

    result = paginate(SET_LIST_CONFIG, {})
    assert [r["title"] for r in result.items] == ["visible"]
    assert result.pagination.total == 1


def test_named_filter_coercion(seed):
    alice = seed.user("Alice")
    bob = seed.user("Bob")
    seed.set(alice, featured=True)
    seed.set(bob)

    assert paginate(SET_LIST_CONFIG, {"educatorId": str(bob)}).pagination.total == 1
    assert paginate(SET_LIST_CONFIG, {"featured": "true"}).pagination.total == 1

    with pytest.raises(ValidationError):
        paginate(SET_LIST_CONFIG, {"educatorId": "bob"})
    with pytest.raises(ValidationError):
        paginate(SET_LIST_CONFIG, {"featured": "maybe"})


def test_unmapped_params_are_ignored(catalogue):
    result = paginate(SET_LIST_CONFIG, {"where": '{"hidden": true}', "password_hash": "x"})
    assert result.pagination.total == 7


def test_empty_result(db):
    result = paginate(SET_LIST_CONFIG, {})
    assert result.items == []
    assert result.to_dict()["pagination"] == {
        "total": 0,
        "page": 1,
        "limit": 12,
        "totalPages": 0,
        "hasMore": False,
    }


def test_text_search_filter_bounds(seed):
    assert text_search_filter([sets.c.title], "a") is None
    assert text_search_filter([sets.c.title], "x" * 101) is None
    assert text_search_filter([sets.c.title], None) is None

    owner = seed.user("Owner")
    seed.set(owner, title="100% Organic Chemistry")
    seed.set(owner, title="Biology")
    clause = text_search_filter([sets.c.title, sets.c.description], "100%")
    assert paginate(SET_LIST_CONFIG, {}, where=[clause]).pagination.total == 1


def test_huge_page_keeps_offset_bindable(catalogue):
    req = resolve_page_request(SET_LIST_CONFIG, {"page": str(10 ** 20), "limit": "5"})
    assert req.offset <= 2 ** 63 - 1

    result = paginate(SET_LIST_CONFIG, {"page": str(10 ** 20)})
    assert result.items == []
    assert result.pagination.total == 7


def test_out_of_range_int_filter_is_rejected(catalogue):
    with pytest.raises(ValidationError):
        paginate(SET_LIST_CONFIG, {"educatorId": str(10 ** 20)})
