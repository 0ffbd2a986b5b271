from __future__ import annotations

import logging

import bleach
from flask import Blueprint, jsonify, session
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from customtees.blueprints.common import json_body, require_user
from customtees.blueprints.serializers import serialize_user
from customtees.database import get_db
from customtees.errors import AuthenticationError, ConflictError, ValidationError
from customtees.models import User

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@auth_bp.route("/register", methods=["POST"])
def register():
    payload = json_body()
    username = bleach.clean(str(payload.get("username") or ""), tags=[], strip=True).strip()
    email = str(payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not username or not email or not password:
        raise ValidationError("username, email and password are required")
    if "@" not in email:
        raise ValidationError("A valid email address is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    db = get_db()
    if db.query(User).filter(func.lower(User.username) == username.lower()).first():
        raise ConflictError("Username already exists")
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("Email already registered")

    user = User(username=username, email=email, passwordHash=generate_password_hash(password), role="customer")
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Username or email already registered") from exc

    session.clear()
    session["user_id"] = user.userID
    logger.info("User %s registered", user.userID)
    return jsonify({"success": True, "user": serialize_user(user)}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = json_body()
    identifier = str(payload.get("username") or payload.get("email") or "").strip()
    password = payload.get("password") or ""
    if not identifier or not password:
        raise ValidationError("username and password are required")

    user = (
        get_db()
        .query(User)
        .filter(or_(User.username == identifier, User.email == identifier.lower()))
        .first()
    )
    if user is None or not check_password_hash(user.passwordHash, password):
        logger.info("Failed login attempt", extra={"identifier": identifier})
        raise AuthenticationError("Invalid username or password")

    session.clear()
    session["user_id"] = user.userID
    return jsonify({"success": True, "user": serialize_user(user)})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"success": True, "message": "Logged out"})


@auth_bp.route("/me", methods=["GET"])
def me():
    return jsonify({"success": True, "user": serialize_user(require_user())})
