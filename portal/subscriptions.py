# portal/subscriptions.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import Blueprint, abort, current_app, g, jsonify, render_template, request, session, url_for
from flask_login import current_user

from .authz import provider_permission_required
from .errors import CandlepinError, error_display_message, parse_display_message
from .extensions import db, limiter
from .models import Organization
from .pools import Pool
from .services import notify
from .services.manifests import (
    create_scratch_file,
    fetch_import_history,
    remove_scratch_file,
    should_open_new_panel,
    web_app_prefix,
)

subscriptions_bp = Blueprint("subscriptions", __name__, template_folder="templates")

# two pane columns and mapping for sortable fields
COLUMNS = {"name": "name_sort"}
DEFAULT_ORDER = ["name_sort", "ASC"]
DISPLAY_NAME = "subscription"


@subscriptions_bp.errorhandler(CandlepinError)
def candlepin_errorhandler(e: CandlepinError):
    current_app.logger.exception("Entitlement service error in /subscriptions/*")
    message = parse_display_message(e.response) or str(e)
    return render_template("subscriptions/_error.html", message=message), 502


# =========================================================
# Helpers
# =========================================================
def current_organization() -> Optional[Organization]:
    """Organization picked for this session, else the user's default."""
    org_id = session.get("organization_id")
    if org_id:
        org = db.session.get(Organization, int(org_id))
        if org is not None:
            return org
    return getattr(current_user, "organization", None)


@subscriptions_bp.before_request
def find_provider():
    g.provider = None
    if not current_user.is_authenticated:
        return
    org = current_organization()
    g.organization = org
    g.provider = org.redhat_provider if org else None


def _page_size() -> int:
    size = getattr(current_user, "page_size", None) or current_app.config.get("DEFAULT_PAGE_SIZE", 25)
    return max(int(size), 1)


def _offset() -> int:
    try:
        return max(int(request.args.get("offset") or 0), 0)
    except ValueError:
        return 0


def split_order(order: Optional[str]) -> List[str]:
    if order:
        return order.split()
    return list(DEFAULT_ORDER)


def _sort_pools(pools: List[Pool], order: List[str]) -> List[Pool]:
    field = order[0] if order else DEFAULT_ORDER[0]
    if field not in COLUMNS.values():
        field = COLUMNS.get(field, DEFAULT_ORDER[0])
    descending = len(order) > 1 and order[1].upper() == "DESC"
    return sorted(pools, key=lambda p: getattr(p, field) or "", reverse=descending)


def panel_options(provider) -> Dict[str, Any]:
    return {
        "title": "Subscriptions",
        "col": ["name"],
        "titles": ["Name"],
        "custom_rows": True,
        "enable_create": provider.editable(current_user),
        "create_label": "+ Import Manifest",
        "enable_sort": True,
        "name": DISPLAY_NAME,
        "list_partial": "subscriptions/_list_subscriptions.html",
        "ajax_load": True,
        "ajax_scroll": url_for("subscriptions.items"),
        "actions": None,
        "initial_state": None,
    }


def _render_items(pools: List[Pool], total: int, offset: int):
    return render_template(
        "subscriptions/_items.html",
        items=pools,
        total=total,
        offset=offset,
        columns=list(COLUMNS.keys()),
        name=DISPLAY_NAME,
    )


def _find_subscription(pool_id: str) -> Pool:
    pool = Pool.find_pool(pool_id)
    if pool is None:
        abort(404)
    return pool


# =========================================================
# Listing / search
# =========================================================
@subscriptions_bp.get("/")
@provider_permission_required("index")
def index():
    provider = g.provider
    options = panel_options(provider)

    # Open the "new" panel when no manifest has been imported yet or one is
    # still being imported. A failed last import keeps the list panel so
    # previously imported subscriptions stay visible.
    if provider.editable(current_user):
        details = g.organization.owner_details()
        if should_open_new_panel(details, provider.task_status):
            options["initial_state"] = {"panel": "new"}

    return render_template("subscriptions/index.html", panel_options=options, provider=provider)


@subscriptions_bp.get("/items")
@provider_permission_required("items")
def items():
    """
    Without search terms, pools come straight from the entitlement service,
    which is also the only time they get re-indexed. Searches hit the index,
    which may therefore lag the service.
    """
    provider = g.provider
    order = split_order(request.args.get("order"))
    search = request.args.get("search")
    offset = _offset()

    if not (search or "").strip():
        pools = provider.index_subscriptions()

        if offset != 0 and not pools:
            return ""

        pools = _sort_pools(pools, order)
        page = pools[offset:offset + _page_size()]
        return _render_items(page, len(pools), offset)

    # Limit subscriptions to current org and Red Hat provider
    filters = {"org": g.organization.label, "provider_id": provider.id}
    results = Pool.search(search, offset, _page_size(), filters)
    results_total = 0 if len(results) == 0 else results.total
    return _render_items(list(results), results_total, offset)


# =========================================================
# Detail panes
# =========================================================
@subscriptions_bp.get("/<pool_id>/edit")
@provider_permission_required("edit")
def edit(pool_id: str):
    subscription = _find_subscription(pool_id)
    return render_template("subscriptions/_edit.html", subscription=subscription, editable=False, name=DISPLAY_NAME)


@subscriptions_bp.get("/<pool_id>")
@provider_permission_required("show")
def show(pool_id: str):
    subscription = _find_subscription(pool_id)
    return render_template(
        "subscriptions/_show.html",
        item=subscription,
        columns=list(COLUMNS.keys()),
        provider=g.provider,
    )


@subscriptions_bp.get("/<pool_id>/products")
@provider_permission_required("products")
def products(pool_id: str):
    subscription = _find_subscription(pool_id)
    return render_template("subscriptions/_products.html", subscription=subscription, editable=False, name=DISPLAY_NAME)


@subscriptions_bp.get("/<pool_id>/consumers")
@provider_permission_required("consumers")
def consumers(pool_id: str):
    subscription = _find_subscription(pool_id)
    return render_template(
        "subscriptions/_consumers.html",
        subscription=subscription,
        consumers=subscription.consumers(),
        editable=False,
        name=DISPLAY_NAME,
    )


# =========================================================
# Manifest import panel + history
# =========================================================
@subscriptions_bp.get("/new")
@provider_permission_required("new")
def new():
    provider = g.provider
    details = g.organization.owner_details()
    if details.get("upstreamUuid") == "":
        details["upstreamUuid"] = None

    history = fetch_import_history(provider, quiet=True)
    try:
        if details.get("upstreamUuid"):
            prefix = web_app_prefix(history.statuses, details["upstreamUuid"])
            if prefix:
                details["webAppPrefix"] = prefix
    except Exception:
        # quietly ignore
        current_app.logger.debug("webAppPrefix lookup failed", exc_info=True)

    return render_template(
        "subscriptions/_new.html",
        provider=provider,
        statuses=history.statuses,
        details=details,
        name=DISPLAY_NAME,
    )


@subscriptions_bp.get("/history")
@provider_permission_required("history")
def history():
    provider = g.provider
    result = fetch_import_history(provider, quiet=True)
    return render_template(
        "subscriptions/history.html",
        provider=provider,
        statuses=result.statuses,
        name=DISPLAY_NAME,
    )


@subscriptions_bp.get("/history_items")
@provider_permission_required("history_items")
def history_items():
    provider = g.provider
    result = fetch_import_history(provider, quiet=False)

    if not result.ok:
        error = result.error
        display_message = parse_display_message(getattr(error, "response", None))
        error_text = f"Unable to retrieve subscription history for provider '{provider.name}'."
        if display_message:
            error_text += f"<br />Reason: {display_message}"
        notify.exception(error_text, error, asynchronous=True)

        current_app.logger.error("Error fetching subscription history from Candlepin", exc_info=error)
        return (
            render_template("subscriptions/_history_items.html", provider=provider, statuses=[], name=DISPLAY_NAME),
            400,
        )

    return render_template(
        "subscriptions/_history_items.html",
        provider=provider,
        statuses=result.statuses,
        name=DISPLAY_NAME,
    )


# =========================================================
# Manifest upload / delete
# =========================================================
@subscriptions_bp.post("/upload")
@limiter.limit("10 per minute")
@provider_permission_required("upload")
def upload():
    """
    Queue a manifest import. The response always reports "running"; the
    import history shows whether it actually worked.
    """
    provider = g.provider
    contents = request.files.get("contents")

    if contents is None or not contents.filename:
        # user didn't provide a manifest to upload
        notify.error("Subscription manifest must be specified on upload.")
        return jsonify({"state": "running"})

    temp_path = None
    handed_off = False
    try:
        temp_path = create_scratch_file("import", contents.stream)
        force = request.form.get("force_import") == "1"
        provider.import_manifest(
            temp_path,
            force=force,
            asynchronous=True,
            notify=True,
            user=current_user._get_current_object(),
        )
        handed_off = True
    except Exception as e:
        display_message = error_display_message(e)
        notify.exception(provider.import_error_message(display_message), e)
        current_app.logger.exception("error uploading subscriptions.")
        # Fall through even on error so that the import history is refreshed
    finally:
        if not handed_off:
            remove_scratch_file(temp_path)

    return jsonify({"state": "running"})


@subscriptions_bp.post("/delete_manifest")
@limiter.limit("10 per minute")
@provider_permission_required("delete_manifest")
def delete_manifest():
    provider = g.provider
    try:
        provider.delete_manifest(asynchronous=True, notify=True, user=current_user._get_current_object())
    except Exception as e:
        display_message = error_display_message(e)
        notify.exception(provider.delete_error_message(display_message), e)
        current_app.logger.exception("error deleting subscription manifest.")

    return jsonify({"state": "running"})
