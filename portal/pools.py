# portal/pools.py
from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import CandlepinError
from .services import candlepin


# =========================================================
# Search results container
# =========================================================
class SearchResults(list):
    """A page of pools plus the index's total hit count."""

    def __init__(self, items: Iterable["Pool"] = (), total: int = 0):
        super().__init__(items)
        self.total = total


# =========================================================
# Pool (read-through projection of an entitlement-service pool)
# =========================================================
@dataclass
class Pool:
    cp_id: str
    name: str
    product_id: str = ""
    quantity: int = 0
    consumed: int = 0
    start_date: str = ""
    end_date: str = ""
    account: str = ""
    contract: str = ""
    support_level: str = ""
    provided_products: List[Dict[str, Any]] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def name_sort(self) -> str:
        return (self.name or "").lower()

    @property
    def unlimited(self) -> bool:
        return self.quantity == -1

    @classmethod
    def from_candlepin(cls, data: Dict[str, Any]) -> "Pool":
        data = data or {}
        attrs = {a.get("name"): a.get("value") for a in (data.get("productAttributes") or []) if isinstance(a, dict)}
        return cls(
            cp_id=str(data.get("id") or ""),
            name=data.get("productName") or "",
            product_id=data.get("productId") or "",
            quantity=int(data.get("quantity") or 0),
            consumed=int(data.get("consumed") or 0),
            start_date=data.get("startDate") or "",
            end_date=data.get("endDate") or "",
            account=str(data.get("accountNumber") or ""),
            contract=str(data.get("contractNumber") or ""),
            support_level=attrs.get("support_level") or "",
            provided_products=list(data.get("providedProducts") or []),
            payload=data,
        )

    @classmethod
    def find_pool(cls, pool_id: str) -> Optional["Pool"]:
        """Fetch a single pool. Returns None when the service does not know it."""
        try:
            data = candlepin.get_client().get_pool(pool_id)
        except CandlepinError as e:
            if e.status_code == 404:
                return None
            raise
        return cls.from_candlepin(data) if data else None

    def consumers(self) -> List[Dict[str, Any]]:
        """Consumers holding entitlements from this pool."""
        rows = candlepin.get_client().get_pool_entitlements(self.cp_id)
        consumers = []
        for ent in rows:
            consumer = ent.get("consumer") or {}
            consumers.append(
                {
                    "uuid": consumer.get("uuid") or "",
                    "name": consumer.get("name") or "",
                    "quantity": ent.get("quantity") or 0,
                }
            )
        return consumers

    @classmethod
    def search(
        cls,
        text: str,
        offset: int = 0,
        page_size: int = 25,
        filters: Optional[Dict[str, Any]] = None,
    ) -> SearchResults:
        """Query the secondary search index (not the entitlement service)."""
        from .models import PoolIndexEntry

        return PoolIndexEntry.search(text, offset=offset, page_size=page_size, filters=filters or {})


# =========================================================
# Search text parsing
# =========================================================
SEARCH_FIELDS = ("name", "product", "account", "contract", "id")


def parse_search_text(text: str) -> list[tuple[Optional[str], str]]:
    """
    Split search text into (field, value) terms.

    - `name:"Red Hat"` -> ("name", "Red Hat")
    - `rhel`           -> (None, "rhel")
    - `*` / blank      -> []  (match everything)
    """
    text = (text or "").strip()
    if not text or text == "*":
        return []

    try:
        tokens = shlex.split(text)
    except ValueError:
        tokens = text.split()

    terms: list[tuple[Optional[str], str]] = []
    for tok in tokens:
        if tok == "*":
            continue
        key, sep, value = tok.partition(":")
        key = key.strip().lower()
        if sep and key in SEARCH_FIELDS and value.strip():
            terms.append((key, value.strip()))
        else:
            terms.append((None, tok))
    return terms
