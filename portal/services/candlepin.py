# portal/services/candlepin.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from flask import current_app

from ..errors import CandlepinError

log = logging.getLogger("candlepin.client")


@dataclass(frozen=True)
class CandlepinConfig:
    url: str
    username: str
    password: str
    timeout: int = 30
    verify_ssl: bool = True


def load_candlepin_config(app=None) -> CandlepinConfig:
    app = app or current_app
    url = (app.config.get("CANDLEPIN_URL") or "").rstrip("/")
    if not url:
        raise RuntimeError("CANDLEPIN_URL is not set")

    return CandlepinConfig(
        url=url,
        username=(app.config.get("CANDLEPIN_USER") or "").strip(),
        password=(app.config.get("CANDLEPIN_PASSWORD") or "").strip(),
        timeout=int(app.config.get("CANDLEPIN_TIMEOUT", 30) or 30),
        verify_ssl=bool(app.config.get("CANDLEPIN_VERIFY_SSL", True)),
    )


def _owner_path(owner_key: str) -> str:
    return f"/owners/{quote(owner_key, safe='')}"


class CandlepinClient:
    """
    Thin JSON client for the Candlepin entitlement service.

    Every non-2xx answer is raised as CandlepinError with the response
    attached, so callers can show the service's displayMessage.
    """

    def __init__(self, cfg: CandlepinConfig):
        self.cfg = cfg

    # -----------------------
    # transport
    # -----------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.cfg.url}{path}"
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Accept", "application/json")

        try:
            r = requests.request(
                method,
                url,
                auth=(self.cfg.username, self.cfg.password),
                headers=headers,
                timeout=self.cfg.timeout,
                verify=self.cfg.verify_ssl,
                **kwargs,
            )
        except requests.RequestException as e:
            log.error("Candlepin unreachable method=%s path=%s err=%s", method, path, e)
            raise CandlepinError(f"Unable to reach the entitlement service: {e}") from e

        if r.status_code >= 400:
            log.error("Candlepin call failed method=%s path=%s status=%s body=%s", method, path, r.status_code, r.text)
            raise CandlepinError(
                f"Entitlement service returned {r.status_code} for {method} {path}",
                status_code=r.status_code,
                response=r,
            )
        return r

    @staticmethod
    def _json(r: requests.Response) -> Any:
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    # -----------------------
    # owners
    # -----------------------
    def get_owner(self, owner_key: str) -> Dict[str, Any]:
        return self._json(self._request("GET", _owner_path(owner_key))) or {}

    def get_owner_imports(self, owner_key: str) -> List[Dict[str, Any]]:
        return self._json(self._request("GET", f"{_owner_path(owner_key)}/imports")) or []

    def import_manifest(self, owner_key: str, path: str, *, force: bool = False) -> Dict[str, Any]:
        """
        Upload a manifest archive.

        The service reads force from the query string as the literal
        "true"/"false".
        """
        params = {"force": "true" if force else "false"}
        with open(path, "rb") as fh:
            files = {"import": (os.path.basename(path), fh, "application/zip")}
            r = self._request("POST", f"{_owner_path(owner_key)}/imports", params=params, files=files)
        return self._json(r) or {}

    def delete_manifest(self, owner_key: str) -> Optional[Dict[str, Any]]:
        return self._json(self._request("DELETE", f"{_owner_path(owner_key)}/imports"))

    # -----------------------
    # pools
    # -----------------------
    def get_pools(self, owner_key: str) -> List[Dict[str, Any]]:
        return self._json(self._request("GET", f"{_owner_path(owner_key)}/pools")) or []

    def get_pool(self, pool_id: str) -> Dict[str, Any]:
        return self._json(self._request("GET", f"/pools/{quote(pool_id, safe='')}")) or {}

    def get_pool_entitlements(self, pool_id: str) -> List[Dict[str, Any]]:
        return self._json(self._request("GET", f"/pools/{quote(pool_id, safe='')}/entitlements")) or []


def get_client(app=None) -> CandlepinClient:
    return CandlepinClient(load_candlepin_config(app))
