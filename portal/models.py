from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask_login import UserMixin
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from . import request_cache
from .errors import ValidationError
from .extensions import db
from .pools import Pool, SearchResults, parse_search_text
from .services import candlepin

log = logging.getLogger("portal.models")


def _safe_commit() -> None:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# =========================================================
# Users (portal login)
# =========================================================
class User(UserMixin, db.Model):
    """
    Portal users.

    - Login identifier is email (store lowercase).
    - role: admin | manifest_manager | reader
    - page_size drives paging of subscription search results.
    """
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(80), nullable=True)

    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    role = db.Column(db.String(20), nullable=False, default="reader", index=True)
    is_superadmin = db.Column(db.Boolean, nullable=False, default=False)

    page_size = db.Column(db.Integer, nullable=False, default=25)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    organization = db.relationship("Organization", lazy="joined")

    # --- Password helpers ---
    @staticmethod
    def hash_password(password: str) -> str:
        return generate_password_hash(password, method="scrypt")

    def set_password(self, password: str) -> None:
        self.password_hash = self.hash_password(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def has_role(self, *roles: str) -> bool:
        if self.is_superadmin:
            return True
        return (self.role or "").strip().lower() in {r.lower() for r in roles}

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


# =========================================================
# Organizations + entitlement providers
# =========================================================
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)

    label = db.Column(db.String(128), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Candlepin owner key; defaults to label when unset
    cp_key = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    providers = db.relationship("Provider", back_populates="organization", cascade="all, delete-orphan", lazy="select")
    environments = db.relationship("Environment", back_populates="organization", cascade="all, delete-orphan", lazy="select")

    @property
    def candlepin_owner_key(self) -> str:
        return self.cp_key or self.label

    @property
    def redhat_provider(self) -> Optional["Provider"]:
        return Provider.query.filter_by(organization_id=self.id, provider_type=Provider.REDHAT).first()

    def owner_details(self) -> Dict[str, Any]:
        """
        Owner details from the entitlement service.

        Newer Candlepin versions report the upstream link as
        upstreamConsumer.uuid instead of upstreamUuid; both end up in
        details["upstreamUuid"].
        """
        details = dict(candlepin.get_client().get_owner(self.candlepin_owner_key) or {})
        if "upstreamUuid" not in details:
            upstream = details.get("upstreamConsumer") or {}
            details["upstreamUuid"] = upstream.get("uuid") if isinstance(upstream, dict) else None
        return details

    @classmethod
    def create(cls, label: str, name: str, cp_key: str | None = None) -> "Organization":
        """New organization plus its Red Hat provider and Library environment."""
        org = cls(label=label, name=name, cp_key=cp_key)
        db.session.add(org)
        db.session.flush()

        db.session.add(Provider(name="Red Hat", provider_type=Provider.REDHAT, organization_id=org.id))
        db.session.add(Environment(name="Library", label="Library", library=True, organization_id=org.id))
        return org

    def __repr__(self) -> str:
        return f"<Organization id={self.id} label={self.label}>"


class Provider(db.Model):
    __tablename__ = "providers"

    REDHAT = "Red Hat"
    CUSTOM = "Custom"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    provider_type = db.Column(db.String(20), nullable=False, default=REDHAT, index=True)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    organization = db.relationship("Organization", back_populates="providers", lazy="joined")

    # --- Capability checks ---
    def readable(self, user) -> bool:
        if not self._member(user):
            return False
        return user.has_role("admin", "manifest_manager", "reader")

    def editable(self, user) -> bool:
        if not self._member(user):
            return False
        return user.has_role("admin", "manifest_manager")

    def _member(self, user) -> bool:
        if user is None or not getattr(user, "is_authenticated", False):
            return False
        if getattr(user, "is_superadmin", False):
            return True
        return getattr(user, "organization_id", None) == self.organization_id

    # --- Manifest tasks ---
    @property
    def task_status(self) -> Optional["TaskStatus"]:
        """Most recent manifest import/delete task."""
        return (
            TaskStatus.query.filter(
                TaskStatus.provider_id == self.id,
                TaskStatus.task_type.in_(TaskStatus.MANIFEST_TYPES),
            )
            .order_by(TaskStatus.id.desc())
            .first()
        )

    def owner_imports(self) -> List[Dict[str, Any]]:
        return candlepin.get_client().get_owner_imports(self.organization.candlepin_owner_key)

    def index_subscriptions(self) -> List[Pool]:
        """
        Read every pool for the organization from the entitlement service
        and rewrite this provider's rows in the search index.
        """
        rows = candlepin.get_client().get_pools(self.organization.candlepin_owner_key)
        pools = [Pool.from_candlepin(r) for r in rows]
        org_label = self.organization.label
        provider_id = self.id

        self._clear_index()
        for pool in pools:
            db.session.add(PoolIndexEntry.from_pool(pool, org_label=org_label, provider_id=provider_id))
        try:
            _safe_commit()
        except IntegrityError:
            # A concurrent reindex committed rows our DELETE could not see.
            # Its rows come from the same service, so keep them.
            log.warning("Pool index rewrite lost a race provider_id=%s; keeping existing rows", provider_id)
        return pools

    def _clear_index(self) -> None:
        PoolIndexEntry.query.filter_by(provider_id=self.id).delete(synchronize_session=False)

    def import_manifest(
        self,
        path: str,
        *,
        force: bool = False,
        asynchronous: bool = True,
        notify: bool = False,
        user=None,
    ) -> "TaskStatus":
        from .services import manifests

        task = TaskStatus.create(TaskStatus.IMPORT_MANIFEST, provider=self, user=user, parameters={"force": force})
        if asynchronous:
            manifests.submit_manifest_import(task, path=path, force=force, notify=notify)
        else:
            manifests.perform_manifest_import(task.id, path=path, force=force, notify=notify)
        return task

    def delete_manifest(self, *, asynchronous: bool = True, notify: bool = False, user=None) -> "TaskStatus":
        from .services import manifests

        task = TaskStatus.create(TaskStatus.DELETE_MANIFEST, provider=self, user=user)
        if asynchronous:
            manifests.submit_manifest_delete(task, notify=notify)
        else:
            manifests.perform_manifest_delete(task.id, notify=notify)
        return task

    # --- User-facing messages ---
    def _error_text(self, headline: str, display_message: str) -> str:
        parts = [headline]
        if display_message:
            parts.append(f"Reason: {display_message}")
        return "<br />".join(parts)

    def import_error_message(self, display_message: str) -> str:
        return self._error_text(f"Subscription manifest upload for provider '{self.name}' failed.", display_message)

    def delete_error_message(self, display_message: str) -> str:
        return self._error_text(f"Subscription manifest delete for provider '{self.name}' failed.", display_message)

    def import_success_message(self) -> str:
        return f"Subscription manifest uploaded successfully for provider '{self.name}'."

    def delete_success_message(self) -> str:
        return f"Subscription manifest deleted successfully for provider '{self.name}'."

    def __repr__(self) -> str:
        return f"<Provider id={self.id} name={self.name} org_id={self.organization_id}>"


# =========================================================
# Task statuses (background manifest jobs)
# =========================================================
class TaskStatus(db.Model):
    __tablename__ = "task_statuses"

    IMPORT_MANIFEST = "import_manifest"
    DELETE_MANIFEST = "delete_manifest"
    MANIFEST_TYPES = (IMPORT_MANIFEST, DELETE_MANIFEST)

    # waiting -> running -> finished | error
    WAITING = "waiting"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    task_type = db.Column(db.String(40), nullable=False, index=True)
    state = db.Column(db.String(20), nullable=False, default=WAITING, index=True)

    parameters_json = db.Column(db.Text, nullable=True)
    result_json = db.Column(db.Text, nullable=True)

    start_time = db.Column(db.DateTime, nullable=True)
    finish_time = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    provider = db.relationship("Provider", lazy="joined")

    @classmethod
    def create(cls, task_type: str, *, provider: Provider, user=None, parameters: dict | None = None) -> "TaskStatus":
        task = cls(
            task_type=task_type,
            provider_id=provider.id,
            organization_id=provider.organization_id,
            user_id=getattr(user, "id", None),
            parameters_json=json.dumps(parameters) if parameters else None,
        )
        db.session.add(task)
        _safe_commit()
        return task

    @property
    def result(self) -> Any:
        return json.loads(self.result_json) if self.result_json else None

    @property
    def pending(self) -> bool:
        return self.state in (self.WAITING, self.RUNNING)

    def start(self, now: datetime | None = None) -> None:
        self.state = self.RUNNING
        self.start_time = now or datetime.utcnow()

    def finish(self, result: Any = None, now: datetime | None = None) -> None:
        self.state = self.FINISHED
        self.result_json = json.dumps(result) if result is not None else None
        self.finish_time = now or datetime.utcnow()

    def fail(self, message: str, now: datetime | None = None) -> None:
        self.state = self.ERROR
        self.result_json = json.dumps({"errors": [message]})
        self.finish_time = now or datetime.utcnow()

    def __repr__(self) -> str:
        return f"<TaskStatus id={self.id} type={self.task_type} state={self.state}>"


# =========================================================
# Notices (user-facing notifications)
# =========================================================
class Notice(db.Model):
    __tablename__ = "notices"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # success / error
    level = db.Column(db.String(20), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    details = db.Column(db.Text, nullable=True)

    # raised by a background job rather than the request itself
    asynchronous = db.Column(db.Boolean, nullable=False, default=False)
    viewed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Notice id={self.id} level={self.level} user_id={self.user_id}>"


# =========================================================
# Pool search index
# =========================================================
class PoolIndexEntry(db.Model):
    """
    Secondary search index over entitlement-service pools.

    Only rewritten by Provider.index_subscriptions(), so it can trail the
    service between unfiltered listings.
    """
    __tablename__ = "pool_index"
    __table_args__ = (
        db.UniqueConstraint("provider_id", "cp_id", name="uq_pool_index_provider_cp_id"),
    )

    id = db.Column(db.Integer, primary_key=True)

    cp_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, default="", index=True)
    product_id = db.Column(db.String(64), nullable=True, index=True)
    account = db.Column(db.String(64), nullable=True)
    contract = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    consumed = db.Column(db.Integer, nullable=False, default=0)
    start_date = db.Column(db.String(40), nullable=True)
    end_date = db.Column(db.String(40), nullable=True)

    org_label = db.Column(db.String(128), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False, index=True)

    payload_json = db.Column(db.Text, nullable=True)

    indexed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    FIELD_COLUMNS = {
        "name": "name",
        "product": "product_id",
        "account": "account",
        "contract": "contract",
        "id": "cp_id",
    }

    @classmethod
    def from_pool(cls, pool: Pool, *, org_label: str, provider_id: int) -> "PoolIndexEntry":
        return cls(
            cp_id=pool.cp_id,
            name=pool.name,
            product_id=pool.product_id,
            account=pool.account,
            contract=pool.contract,
            quantity=pool.quantity,
            consumed=pool.consumed,
            start_date=pool.start_date,
            end_date=pool.end_date,
            org_label=org_label,
            provider_id=provider_id,
            payload_json=json.dumps(pool.payload) if pool.payload else None,
        )

    def to_pool(self) -> Pool:
        if self.payload_json:
            return Pool.from_candlepin(json.loads(self.payload_json))
        return Pool(
            cp_id=self.cp_id,
            name=self.name,
            product_id=self.product_id or "",
            quantity=self.quantity,
            consumed=self.consumed,
            start_date=self.start_date or "",
            end_date=self.end_date or "",
            account=self.account or "",
            contract=self.contract or "",
        )

    @staticmethod
    def _like(value: str) -> str:
        # "%" and "_" are literal in search text; only "*" is a wildcard
        escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped.replace('*', '%')}%"

    @classmethod
    def search(
        cls,
        text: str,
        *,
        offset: int = 0,
        page_size: int = 25,
        filters: Dict[str, Any] | None = None,
    ) -> SearchResults:
        filters = filters or {}
        query = cls.query

        if "org" in filters:
            query = query.filter(cls.org_label == filters["org"])
        if "provider_id" in filters:
            query = query.filter(cls.provider_id == filters["provider_id"])

        for field_name, value in parse_search_text(text):
            pattern = cls._like(value)
            if field_name is None:
                query = query.filter(or_(cls.name.ilike(pattern, escape="\\"), cls.product_id.ilike(pattern, escape="\\")))
            else:
                column = getattr(cls, cls.FIELD_COLUMNS[field_name])
                query = query.filter(column.ilike(pattern, escape="\\"))

        total = query.count()
        rows = (
            query.order_by(cls.name.asc(), cls.id.asc())
            .offset(max(int(offset or 0), 0))
            .limit(max(int(page_size or 0), 1))
            .all()
        )
        return SearchResults([r.to_pool() for r in rows], total=total)

    def __repr__(self) -> str:
        return f"<PoolIndexEntry id={self.id} cp_id={self.cp_id} provider_id={self.provider_id}>"


# =========================================================
# Promotion pipeline: environments, products, repositories
# =========================================================
class Environment(db.Model):
    __tablename__ = "environments"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    label = db.Column(db.String(128), nullable=False)

    # Library is the root of every promotion path
    library = db.Column(db.Boolean, nullable=False, default=False)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    prior_id = db.Column(db.Integer, db.ForeignKey("environments.id"), nullable=True, index=True)

    organization = db.relationship("Organization", back_populates="environments", lazy="joined")
    prior = db.relationship("Environment", remote_side=[id], lazy="joined")

    def __repr__(self) -> str:
        return f"<Environment id={self.id} label={self.label} prior_id={self.prior_id}>"


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)

    cp_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    def repos(self, environment: Optional[Environment]) -> List["Repository"]:
        """This product's repositories as materialized in environment."""
        if environment is None:
            return []
        return (
            Repository.query.filter_by(product_id=self.id, environment_id=environment.id)
            .order_by(Repository.id.asc())
            .all()
        )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name}>"


class Repository(db.Model):
    __tablename__ = "repositories"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    environment_id = db.Column(db.Integer, db.ForeignKey("environments.id"), nullable=False, index=True)

    # Library repository this one was cloned from (NULL for Library repos)
    library_instance_id = db.Column(db.Integer, db.ForeignKey("repositories.id"), nullable=True, index=True)

    product = db.relationship("Product", lazy="joined")
    environment = db.relationship("Environment", lazy="joined")

    @property
    def library_instance_key(self) -> int:
        return self.library_instance_id or self.id

    def has_package(self, package_id: str) -> bool:
        return (
            RepositoryPackage.query.filter_by(repository_id=self.id, package_id=package_id).first()
            is not None
        )

    def get_clone(self, environment: Environment) -> Optional["Repository"]:
        key = self.library_instance_key
        return (
            Repository.query.filter(
                Repository.environment_id == environment.id,
                or_(Repository.library_instance_id == key, Repository.id == key),
            )
            .first()
        )

    def is_cloned_in(self, environment: Environment) -> bool:
        return self.get_clone(environment) is not None

    def __repr__(self) -> str:
        return f"<Repository id={self.id} name={self.name} env_id={self.environment_id}>"


class RepositoryPackage(db.Model):
    __tablename__ = "repository_packages"
    __table_args__ = (
        db.UniqueConstraint("repository_id", "package_id", name="uq_repository_packages_repo_package"),
    )

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey("repositories.id"), nullable=False, index=True)
    package_id = db.Column(db.String(255), nullable=False, index=True)


# =========================================================
# Changesets (promotion)
# =========================================================
@dataclass(frozen=True)
class VirtualTag:
    """Minimal (id, display name) tag for the permission system."""
    name: Any
    display_name: Optional[str]


class Changeset(db.Model):
    __tablename__ = "changesets"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)

    # target environment of the promotion
    environment_id = db.Column(db.Integer, db.ForeignKey("environments.id"), nullable=False, index=True)

    # new / review / promoting / promoted
    state = db.Column(db.String(20), nullable=False, default="new")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    environment = db.relationship("Environment", lazy="joined")
    packages = db.relationship(
        "ChangesetPackage",
        back_populates="changeset",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def add_package(
        self,
        nvrea: str,
        product: Product,
        *,
        package_id: str | None = None,
        display_name: str | None = None,
    ) -> "ChangesetPackage":
        pkg = ChangesetPackage(
            changeset=self,
            product=product,
            nvrea=nvrea,
            package_id=package_id or nvrea,
            display_name=display_name or nvrea,
        )
        try:
            pkg.validate()
        except ValidationError:
            self.packages.remove(pkg)
            raise
        db.session.add(pkg)
        return pkg

    def remove_package(self, nvrea: str, product: Product) -> Optional["ChangesetPackage"]:
        for pkg in list(self.packages):
            if pkg.nvrea == nvrea and pkg.product_id == product.id:
                self.packages.remove(pkg)
                if pkg.id is not None:
                    request_cache.discard(pkg._cache_key())
                return pkg
        return None

    def __repr__(self) -> str:
        return f"<Changeset id={self.id} name={self.name} env_id={self.environment_id}>"


class ChangesetPackage(db.Model):
    __tablename__ = "changeset_packages"
    __table_args__ = (
        db.UniqueConstraint("changeset_id", "nvrea", name="uq_changeset_packages_changeset_nvrea"),
    )

    id = db.Column(db.Integer, primary_key=True)

    display_name = db.Column(db.String(255), nullable=True)

    # name-version-release-epoch-arch
    nvrea = db.Column(db.String(255), nullable=False)
    package_id = db.Column(db.String(255), nullable=False)

    changeset_id = db.Column(db.Integer, db.ForeignKey("changesets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    changeset = db.relationship("Changeset", back_populates="packages")
    product = db.relationship("Product", lazy="joined")

    # --- Validation ---
    def validate(self) -> None:
        errors: list[str] = []

        if self.display_name is not None and len(self.display_name) > 255:
            errors.append("Display name is too long (maximum is 255 characters)")

        if not (self.nvrea or "").strip():
            errors.append("Nvrea can't be blank")
        elif self._nvrea_taken():
            errors.append("Nvrea has already been taken")

        if not errors:
            errors.extend(self._promotion_errors())

        if errors:
            raise ValidationError(errors)

    def _nvrea_taken(self) -> bool:
        changeset_id = self.changeset_id or getattr(self.changeset, "id", None)
        if changeset_id is None:
            return False
        with db.session.no_autoflush:
            query = ChangesetPackage.query.filter(
                ChangesetPackage.changeset_id == changeset_id,
                ChangesetPackage.nvrea == self.nvrea,
            )
            if self.id is not None:
                query = query.filter(ChangesetPackage.id != self.id)
            return query.first() is not None

    def _promotion_errors(self) -> list[str]:
        """The package has to be promotable out of the prior environment."""
        env = self.changeset.environment if self.changeset else None
        if env is None or env.prior is None:
            return ["Packages can only be promoted into an environment with a prior environment"]
        if self.product is None:
            return ["Product must be specified"]
        with db.session.no_autoflush:
            if not self.repositories():
                return [
                    f"Package '{self.nvrea}' was not found in any repository of product "
                    f"'{self.product.name}' in environment '{env.prior.name}'"
                ]
        return []

    # --- Derived collections ---
    def _cache_key(self) -> tuple:
        return ("changeset_package.repositories", self.id)

    def repositories(self) -> List[Repository]:
        """Repositories of the product in the prior environment that contain this package."""
        if self.id is None:
            # unsaved rows have no stable identity to cache under
            return self._load_repositories()
        return request_cache.fetch(self._cache_key(), self._load_repositories)

    def _load_repositories(self) -> List[Repository]:
        from_env = self.changeset.environment.prior
        return [repo for repo in self.product.repos(from_env) if repo.has_package(self.package_id)]

    def promotable_repositories(self) -> List[Repository]:
        """Repositories already cloned into the changeset's target environment."""
        to_env = self.changeset.environment
        return [repo for repo in self.repositories() if repo.is_cloned_in(to_env)]

    @classmethod
    def list_tags(cls) -> List[VirtualTag]:
        rows = db.session.query(cls.id, cls.display_name).order_by(cls.id.asc()).all()
        return [VirtualTag(row.id, row.display_name) for row in rows]

    def __repr__(self) -> str:
        return f"<ChangesetPackage id={self.id} nvrea={self.nvrea} changeset_id={self.changeset_id}>"
