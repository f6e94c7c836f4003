from __future__ import annotations

from datetime import datetime

import pytest

from portal.errors import CandlepinError
from portal.extensions import db
from portal.models import Organization, Provider, TaskStatus
from portal.services.manifests import should_open_new_panel, web_app_prefix


def _task(finish_time=None) -> TaskStatus:
    return TaskStatus(task_type=TaskStatus.IMPORT_MANIFEST, state=TaskStatus.RUNNING, finish_time=finish_time)


@pytest.mark.parametrize(
    "details, task, expected",
    [
        ({"upstreamUuid": None}, None, True),
        ({"upstreamUuid": ""}, None, True),
        ({}, None, True),
        ({"upstreamUuid": "abc"}, None, False),
        ({"upstreamUuid": "abc"}, "running", True),
        ({"upstreamUuid": "abc"}, "finished", False),
    ],
)
def test_should_open_new_panel(details, task, expected):
    if task == "running":
        task = _task()
    elif task == "finished":
        task = _task(finish_time=datetime(2026, 10, 1, 12, 0))
    assert should_open_new_panel(details, task) is expected


def test_web_app_prefix_matches_upstream():
    statuses = [
        {"upstreamId": "other", "webAppPrefix": "https://wrong/"},
        {"upstreamId": "abc", "webAppPrefix": None},
        {"upstreamId": "abc", "webAppPrefix": "https://access.example.com/distributors/"},
    ]
    assert web_app_prefix(statuses, "abc") == "https://access.example.com/distributors/"
    assert web_app_prefix(statuses, "missing") is None


def test_owner_details_reads_nested_upstream_consumer(ctx, seed, candlepin_client):
    candlepin_client.get_owner.return_value = {"key": "ACME", "upstreamConsumer": {"uuid": "up-9"}}
    org = db.session.get(Organization, seed["org_id"])

    assert org.owner_details()["upstreamUuid"] == "up-9"


def test_index_opens_new_panel_without_manifest(as_manager, candlepin_client):
    candlepin_client.get_owner.return_value = {"key": "ACME", "upstreamUuid": None}

    r = as_manager.get("/subscriptions/")

    assert r.status_code == 200
    assert 'data-initial-panel="new"' in r.get_data(as_text=True)


def test_index_opens_new_panel_while_import_runs(app, as_manager, seed, candlepin_client):
    with app.app_context():
        provider = db.session.get(Provider, seed["provider_id"])
        TaskStatus.create(TaskStatus.IMPORT_MANIFEST, provider=provider)

    r = as_manager.get("/subscriptions/")

    assert 'data-initial-panel="new"' in r.get_data(as_text=True)


def test_index_keeps_list_after_failed_import(app, as_manager, seed, candlepin_client):
    with app.app_context():
        provider = db.session.get(Provider, seed["provider_id"])
        task = TaskStatus.create(TaskStatus.IMPORT_MANIFEST, provider=provider)
        task.fail("bad manifest")
        db.session.commit()

    r = as_manager.get("/subscriptions/")

    assert 'data-initial-panel=""' in r.get_data(as_text=True)


def test_index_for_reader_never_opens_new_panel(as_reader, candlepin_client):
    candlepin_client.get_owner.return_value = {"key": "ACME", "upstreamUuid": None}

    r = as_reader.get("/subscriptions/")

    assert r.status_code == 200
    assert 'data-initial-panel=""' in r.get_data(as_text=True)
    candlepin_client.get_owner.assert_not_called()


def test_new_panel_links_upstream_distributor(as_manager, candlepin_client):
    candlepin_client.get_owner.return_value = {"key": "ACME", "upstreamUuid": "abc"}
    candlepin_client.get_owner_imports.return_value = [
        {"upstreamId": "abc", "webAppPrefix": "https://access.example.com/distributors/", "status": "SUCCESS"},
    ]

    r = as_manager.get("/subscriptions/new")

    html = r.get_data(as_text=True)
    assert r.status_code == 200
    assert 'href="https://access.example.com/distributors/abc"' in html


def test_new_panel_treats_blank_upstream_as_missing(as_manager, candlepin_client):
    candlepin_client.get_owner.return_value = {"key": "ACME", "upstreamUuid": ""}

    r = as_manager.get("/subscriptions/new")

    html = r.get_data(as_text=True)
    assert 'data-upstream-uuid=""' in html
    assert "Upstream distributor" not in html


def test_new_panel_ignores_history_failure(as_manager, candlepin_client):
    candlepin_client.get_owner.return_value = {"key": "ACME", "upstreamUuid": "abc"}
    candlepin_client.get_owner_imports.side_effect = CandlepinError("down", status_code=503)

    r = as_manager.get("/subscriptions/new")

    html = r.get_data(as_text=True)
    assert r.status_code == 200
    assert "Upstream distributor" in html
    assert "<a " not in html
