from __future__ import annotations

from flask import Blueprint, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user

from .extensions import db, limiter, login_manager
from .models import User

auth_bp = Blueprint("auth", __name__, template_folder="templates")


@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@auth_bp.get("/login")
def login():
    if current_user.is_authenticated:
        return redirect(url_for("subscriptions.index"))
    return render_template("auth/login.html")


@auth_bp.post("/login")
@limiter.limit("20 per minute")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not user.check_password(password):
        flash("Invalid credentials", "error")
        return redirect(url_for("auth.login"))

    login_user(user)
    session.pop("organization_id", None)
    return redirect(url_for("subscriptions.index"))


@auth_bp.get("/logout")
@login_required
def logout():
    logout_user()
    session.pop("organization_id", None)
    return redirect(url_for("auth.login"))
