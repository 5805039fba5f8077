from flask import Blueprint, current_app, g, jsonify
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from ..errors import ConflictError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import User
from ..utils.auth import create_access_token, token_required
from ..utils.validation import get_json_body, require_fields, require_string
import bcrypt

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1")


@auth_bp.route("/auth/signup", methods=["POST"])
def signup_user():
    """
    Register a customer account
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password]
          properties:
            email:
              type: string
            password:
              type: string
            full_name:
              type: string
    responses:
      201:
        description: User registered
      400:
        description: Missing fields
      409:
        description: Email already exists
    """
    data = require_fields(get_json_body(), "email", "password")
    email = require_string(data, "email").lower()
    password = data.get("password")
    full_name = data.get("full_name")

    if "@" not in email:
        raise ValidationError("Invalid email", fields={"email": "invalid"})
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters", fields={"password": "min 8 characters"})

    existing = db.session.scalar(select(User).where(User.email == email))
    if existing:
        raise ConflictError("Email already exists")

    hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    user = User(email=email, password_hash=hashed_pw, full_name=full_name, role="USER")

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already exists")

    current_app.logger.info(f"User {user.id} registered")
    return jsonify({
        "status": "success",
        "message": "User registered successfully",
        "user": {"id": user.id, "email": user.email, "full_name": user.full_name, "role": user.role},
        "token": create_access_token(user),
    }), 201


@auth_bp.route("/auth/login", methods=["POST"])
def login_user():
    """
    Log in and receive a bearer token
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password]
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful
      401:
        description: Invalid credentials
    """
    data = require_fields(get_json_body(), "email", "password")
    email = require_string(data, "email").lower()
    password = str(data.get("password"))

    user = db.session.scalar(select(User).where(User.email == email))
    if not user or not user.password_hash:
        raise UnauthorizedError("Invalid credentials")

    if not bcrypt.checkpw(password.encode("utf-8"), user.password_hash.encode("utf-8")):
        raise UnauthorizedError("Invalid credentials")

    return jsonify({
        "status": "success",
        "message": "Login successful",
        "token": create_access_token(user),
    }), 200


@auth_bp.route("/users/device-token", methods=["POST"])
@token_required
def save_device_token():
    """
    POST /api/v1/users/device-token
    Purpose: Store the caller's FCM token for loyalty push notifications.
    Input: JSON {"fcm_token": "<token>"}
    """
    data = get_json_body()
    fcm_token = require_string(data, "fcm_token", max_length=255)

    db.session.execute(
        update(User).where(User.id == g.user_id).values(fcm_token=fcm_token)
    )
    db.session.commit()
    return "", 204
