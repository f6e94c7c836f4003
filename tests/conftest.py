from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from unittest.mock import MagicMock

import pytest

from portal import create_app
from portal.extensions import db
from portal.models import Environment, Organization, Product, Repository, RepositoryPackage, User


@pytest.fixture()
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "RATELIMIT_ENABLED": False,
            "JOBS_EAGER": True,
            "UPLOAD_TMP_DIR": str(tmp_path / "uploads"),
            "CANDLEPIN_URL": "https://candlepin.test/candlepin",
            "CANDLEPIN_USER": "admin",
            "CANDLEPIN_PASSWORD": "admin",
        }
    )
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def ctx(app):
    """Push an app context for tests that work with models directly."""
    with app.app_context():
        yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def candlepin_client(monkeypatch):
    """Stand-in for the entitlement service; every call site goes through get_client()."""
    fake = MagicMock(name="CandlepinClient")
    fake.get_owner.return_value = {"key": "ACME", "upstreamUuid": "upstream-1"}
    fake.get_owner_imports.return_value = []
    fake.get_pools.return_value = []
    fake.import_manifest.return_value = {"status": "SUCCESS"}
    fake.delete_manifest.return_value = None
    monkeypatch.setattr("portal.services.candlepin.get_client", lambda app=None: fake)
    return fake


def _make_user(email: str, role: str, org_id: int | None, page_size: int = 25) -> User:
    user = User(email=email, role=role, organization_id=org_id, page_size=page_size)
    user.set_password("secret")
    db.session.add(user)
    return user


@pytest.fixture()
def seed(app):
    """ACME org with its provider, plus users with different capabilities."""
    with app.app_context():
        org = Organization.create("ACME", "Acme Corp")
        other = Organization.create("OTHER", "Other Corp")
        db.session.flush()

        manager = _make_user("manager@acme.test", "manifest_manager", org.id)
        reader = _make_user("reader@acme.test", "reader", org.id)
        outsider = _make_user("outsider@other.test", "admin", other.id)
        small_pages = _make_user("pager@acme.test", "reader", org.id, page_size=2)
        db.session.commit()

        return {
            "org_id": org.id,
            "other_org_id": other.id,
            "provider_id": org.redhat_provider.id,
            "other_provider_id": other.redhat_provider.id,
            "manager_id": manager.id,
            "reader_id": reader.id,
            "outsider_id": outsider.id,
            "pager_id": small_pages.id,
        }


def login(client, user_id: int) -> None:
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True


@pytest.fixture()
def as_manager(client, seed):
    login(client, seed["manager_id"])
    return client


@pytest.fixture()
def as_reader(client, seed):
    login(client, seed["reader_id"])
    return client


@pytest.fixture()
def pipeline(ctx):
    """
    Library -> Dev -> QA for one product.

    - Dev has two repos of the product; only "dev-base" carries foo.
    - QA only has a clone of the base repo.
    """
    org = Organization.create("PIPE", "Pipeline Org")
    db.session.flush()

    library = Environment.query.filter_by(organization_id=org.id, library=True).one()
    dev = Environment(name="Dev", label="dev", organization_id=org.id, prior_id=library.id)
    db.session.add(dev)
    db.session.flush()
    qa = Environment(name="QA", label="qa", organization_id=org.id, prior_id=dev.id)
    db.session.add(qa)

    product = Product(name="RHEL Server", cp_id="69", organization_id=org.id)
    db.session.add(product)
    db.session.flush()

    lib_base = Repository(name="base", product_id=product.id, environment_id=library.id)
    lib_extras = Repository(name="extras", product_id=product.id, environment_id=library.id)
    db.session.add_all([lib_base, lib_extras])
    db.session.flush()

    dev_base = Repository(name="dev-base", product_id=product.id, environment_id=dev.id, library_instance_id=lib_base.id)
    dev_extras = Repository(name="dev-extras", product_id=product.id, environment_id=dev.id, library_instance_id=lib_extras.id)
    qa_base = Repository(name="qa-base", product_id=product.id, environment_id=qa.id, library_instance_id=lib_base.id)
    db.session.add_all([dev_base, dev_extras, qa_base])
    db.session.flush()

    for repo in (lib_base, dev_base, qa_base):
        db.session.add(RepositoryPackage(repository_id=repo.id, package_id="foo-1.0-1.el6.x86_64"))
    db.session.add(RepositoryPackage(repository_id=dev_extras.id, package_id="bar-2.0-1.el6.noarch"))
    db.session.commit()

    return {
        "org": org,
        "library": library,
        "dev": dev,
        "qa": qa,
        "product": product,
        "dev_base": dev_base,
        "dev_extras": dev_extras,
        "qa_base": qa_base,
    }
