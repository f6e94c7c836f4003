from __future__ import annotations

import re

from portal.extensions import db
from portal.models import PoolIndexEntry, Provider
from portal.pools import Pool, SearchResults

from conftest import login


def _pool(cp_id: str, name: str, product_id: str = "RH00001", quantity: int = 10, consumed: int = 0) -> dict:
    return {
        "id": cp_id,
        "productName": name,
        "productId": product_id,
        "quantity": quantity,
        "consumed": consumed,
        "startDate": "2026-01-01",
        "endDate": "2027-01-01",
        "accountNumber": "5555",
        "contractNumber": "10001",
    }


def _attr(html: str, name: str) -> str:
    m = re.search(rf'{name}="([^"]*)"', html)
    assert m, f"{name} not found in {html!r}"
    return m.group(1)


def test_listing_without_search_reads_entitlement_service_and_reindexes(app, as_manager, seed, candlepin_client):
    candlepin_client.get_pools.return_value = [
        _pool("p2", "Beta Server"),
        _pool("p1", "alpha Workstation"),
    ]

    r = as_manager.get("/subscriptions/items")

    assert r.status_code == 200
    html = r.get_data(as_text=True)
    candlepin_client.get_pools.assert_called_once_with("ACME")
    assert _attr(html, "data-total") == "2"
    # sorted case-insensitively by name
    assert html.index("alpha Workstation") < html.index("Beta Server")

    with app.app_context():
        rows = PoolIndexEntry.query.filter_by(provider_id=seed["provider_id"]).all()
        assert sorted(r.cp_id for r in rows) == ["p1", "p2"]
        assert {r.org_label for r in rows} == {"ACME"}


def test_blank_search_text_goes_to_entitlement_service(as_manager, candlepin_client, monkeypatch):
    candlepin_client.get_pools.return_value = [_pool("p1", "Alpha")]

    def _fail(*args, **kwargs):
        raise AssertionError("index must not be queried")

    monkeypatch.setattr(Pool, "search", classmethod(lambda cls, *a, **kw: _fail()))

    r = as_manager.get("/subscriptions/items?search=%20%20")

    assert r.status_code == 200
    candlepin_client.get_pools.assert_called_once()


def test_reindex_replaces_previous_rows(app, as_manager, seed, candlepin_client):
    candlepin_client.get_pools.return_value = [_pool("p1", "Alpha"), _pool("p2", "Beta")]
    as_manager.get("/subscriptions/items")

    candlepin_client.get_pools.return_value = [_pool("p3", "Gamma")]
    as_manager.get("/subscriptions/items")

    with app.app_context():
        rows = PoolIndexEntry.query.filter_by(provider_id=seed["provider_id"]).all()
        assert [r.cp_id for r in rows] == ["p3"]


def test_nonzero_offset_with_no_pools_returns_empty_body(as_manager, candlepin_client):
    candlepin_client.get_pools.return_value = []

    r = as_manager.get("/subscriptions/items?offset=25")

    assert r.status_code == 200
    assert r.get_data(as_text=True) == ""


def test_zero_offset_with_no_pools_renders_empty_list(as_manager, candlepin_client):
    candlepin_client.get_pools.return_value = []

    r = as_manager.get("/subscriptions/items")

    html = r.get_data(as_text=True)
    assert _attr(html, "data-total") == "0"
    assert _attr(html, "data-count") == "0"


def test_listing_pages_by_user_page_size(client, seed, candlepin_client):
    login(client, seed["pager_id"])
    candlepin_client.get_pools.return_value = [_pool(f"p{i}", f"Pool {i}") for i in range(5)]

    first = client.get("/subscriptions/items").get_data(as_text=True)
    second = client.get("/subscriptions/items?offset=4").get_data(as_text=True)

    assert _attr(first, "data-count") == "2"
    assert _attr(first, "data-total") == "5"
    assert _attr(second, "data-count") == "1"
    assert _attr(second, "data-offset") == "4"


def test_search_uses_index_scoped_to_org_and_provider(app, as_manager, seed, candlepin_client):
    with app.app_context():
        own = db.session.get(Provider, seed["provider_id"])
        other = db.session.get(Provider, seed["other_provider_id"])
        db.session.add(PoolIndexEntry.from_pool(Pool.from_candlepin(_pool("a1", "RHEL Server")), org_label="ACME", provider_id=own.id))
        db.session.add(PoolIndexEntry.from_pool(Pool.from_candlepin(_pool("a2", "JBoss EAP")), org_label="ACME", provider_id=own.id))
        db.session.add(PoolIndexEntry.from_pool(Pool.from_candlepin(_pool("o1", "RHEL Server")), org_label="OTHER", provider_id=other.id))
        db.session.commit()

    r = as_manager.get("/subscriptions/items?search=rhel")

    assert r.status_code == 200
    html = r.get_data(as_text=True)
    candlepin_client.get_pools.assert_not_called()
    assert 'data-id="a1"' in html
    assert 'data-id="a2"' not in html
    assert 'data-id="o1"' not in html
    assert _attr(html, "data-total") == "1"


def test_search_passes_org_and_provider_filters(as_manager, seed, monkeypatch):
    seen = {}

    def fake_search(cls, text, offset=0, page_size=25, filters=None):
        seen.update(text=text, offset=offset, page_size=page_size, filters=filters)
        return SearchResults([Pool(cp_id="x1", name="Found")], total=7)

    monkeypatch.setattr(Pool, "search", classmethod(fake_search))

    r = as_manager.get("/subscriptions/items?search=name:Found&offset=5")

    html = r.get_data(as_text=True)
    assert seen["text"] == "name:Found"
    assert seen["offset"] == 5
    assert seen["page_size"] == 25
    assert seen["filters"] == {"org": "ACME", "provider_id": seed["provider_id"]}
    assert _attr(html, "data-total") == "7"


def test_empty_search_result_reports_zero_total(as_manager, monkeypatch):
    # the index can report a stale total next to an empty page
    monkeypatch.setattr(Pool, "search", classmethod(lambda cls, *a, **kw: SearchResults([], total=42)))

    r = as_manager.get("/subscriptions/items?search=nothing")

    html = r.get_data(as_text=True)
    assert r.status_code == 200
    assert _attr(html, "data-total") == "0"
    assert _attr(html, "data-count") == "0"


def test_entitlement_service_failure_renders_error(as_manager, candlepin_client):
    from types import SimpleNamespace

    from portal.errors import CandlepinError

    candlepin_client.get_pools.side_effect = CandlepinError(
        "boom", status_code=500, response=SimpleNamespace(text='{"displayMessage": "Owner ACME is locked"}')
    )

    r = as_manager.get("/subscriptions/items")

    assert r.status_code == 502
    assert "Owner ACME is locked" in r.get_data(as_text=True)


def test_listing_survives_concurrent_reindex(app, as_manager, seed, candlepin_client, monkeypatch):
    # Another request already committed its rewrite, and our DELETE ran
    # before that commit became visible.
    with app.app_context():
        db.session.add(
            PoolIndexEntry.from_pool(Pool.from_candlepin(_pool("p1", "Alpha")), org_label="ACME", provider_id=seed["provider_id"])
        )
        db.session.commit()
    monkeypatch.setattr(Provider, "_clear_index", lambda self: None)
    candlepin_client.get_pools.return_value = [_pool("p1", "Alpha"), _pool("p2", "Beta")]

    r = as_manager.get("/subscriptions/items")

    assert r.status_code == 200
    html = r.get_data(as_text=True)
    assert _attr(html, "data-total") == "2"
    assert 'data-id="p2"' in html

    with app.app_context():
        rows = PoolIndexEntry.query.filter_by(provider_id=seed["provider_id"]).all()
        assert [r.cp_id for r in rows] == ["p1"]
