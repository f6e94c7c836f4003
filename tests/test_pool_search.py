from __future__ import annotations

import pytest

from portal.extensions import db
from portal.models import PoolIndexEntry
from portal.pools import Pool, parse_search_text


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", []),
        ("   ", []),
        ("*", []),
        ("rhel", [(None, "rhel")]),
        ('name:"Red Hat" rhel', [("name", "Red Hat"), (None, "rhel")]),
        ("Product:RH0001", [("product", "RH0001")]),
        ("unknown:value", [(None, "unknown:value")]),
        ('name:"unterminated', [("name", '"unterminated')]),
    ],
)
def test_parse_search_text(text, expected):
    assert parse_search_text(text) == expected


def test_pool_from_candlepin():
    pool = Pool.from_candlepin(
        {
            "id": 42,
            "productName": "Zeta",
            "quantity": -1,
            "accountNumber": 1234,
            "productAttributes": [{"name": "support_level", "value": "Standard"}],
        }
    )

    assert pool.cp_id == "42"
    assert pool.account == "1234"
    assert pool.unlimited
    assert pool.support_level == "Standard"
    assert pool.name_sort == "zeta"


def _index(pool_id: str, name: str, *, org: str = "ACME", provider_id: int, **extra) -> None:
    data = {"id": pool_id, "productName": name, **extra}
    db.session.add(PoolIndexEntry.from_pool(Pool.from_candlepin(data), org_label=org, provider_id=provider_id))


def test_index_search_fields_and_paging(ctx, seed):
    provider_id = seed["provider_id"]
    _index("a", "RHEL Server", provider_id=provider_id, productId="RH1", contractNumber="100")
    _index("b", "RHEL Workstation", provider_id=provider_id, productId="RH2", contractNumber="200")
    _index("c", "JBoss EAP", provider_id=provider_id, productId="MW1", contractNumber="100")
    db.session.commit()

    filters = {"org": "ACME", "provider_id": provider_id}

    results = Pool.search("rhel", 0, 1, filters)
    assert [p.cp_id for p in results] == ["a"]
    assert results.total == 2

    assert [p.cp_id for p in Pool.search("contract:100", 0, 25, filters)] == ["c", "a"]
    assert [p.cp_id for p in Pool.search("name:rhel*station", 0, 25, filters)] == ["b"]
    assert [p.cp_id for p in Pool.search("*", 2, 25, filters)] == ["b"]

    # payload survives the round trip through the index
    assert Pool.search("product:MW1", 0, 25, filters)[0].payload["productId"] == "MW1"


def test_percent_and_underscore_match_literally(ctx, seed):
    provider_id = seed["provider_id"]
    _index("a", "RHEL 100% Support", provider_id=provider_id, contractNumber="1000")
    _index("b", "RHEL Server", provider_id=provider_id, contractNumber="10_0")
    db.session.commit()

    filters = {"org": "ACME", "provider_id": provider_id}

    assert [p.cp_id for p in Pool.search("contract:10_0", 0, 25, filters)] == ["b"]
    assert [p.cp_id for p in Pool.search("100%", 0, 25, filters)] == ["a"]
    # "*" is still the wildcard
    assert [p.cp_id for p in Pool.search("contract:10*0", 0, 25, filters)] == ["a", "b"]
