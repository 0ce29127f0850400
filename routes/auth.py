from flask import Blueprint, jsonify, request
from flask_jwt_extended import (
    create_access_token,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
)
from marshmallow import ValidationError
from sqlalchemy import func

from extensions import db
from models import Role, User
from permissions import current_user, has_permission
from schemas import UserCreateSchema, UserSchema

bp = Blueprint("auth", __name__, url_prefix="/api/auth")
user_schema = UserSchema()
user_create_schema = UserCreateSchema()


def _serialize_user(user: User) -> dict:
    payload = user_schema.dump(user)
    payload["permissions"] = sorted(user.permission_names())
    payload["is_admin"] = user.is_admin
    return payload


@bp.post("/register")
@jwt_required()  # only user managers can register
def register():
    if not has_permission("users.manage"):
        return jsonify({"msg": "Not authorised"}), 403

    try:
        data = user_create_schema.load(request.get_json() or {})
    except ValidationError as exc:
        return jsonify({"msg": "Invalid user payload", "errors": exc.messages}), 400

    email = data["email"].strip().lower()
    if User.query.filter(func.lower(User.email) == email).first():
        return jsonify({"msg": "Email already registered"}), 400

    if data["role_id"] is not None and db.session.get(Role, data["role_id"]) is None:
        return jsonify({"msg": "Invalid role"}), 400

    u = User(
        name=data["name"].strip(),
        email=email,
        role_id=data["role_id"],
        department=data["department"],
        complaint_permissions=data["complaint_permissions"],
        active=True,
    )
    u.set_password(data["password"])
    db.session.add(u)
    db.session.commit()
    return jsonify({"id": u.id}), 201


@bp.post("/login")
def login():
    payload = request.get_json(silent=True)
    if not payload:
        payload = request.form.to_dict() if request.form else {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify({"msg": "Email and password are required"}), 400

    u = User.query.filter(func.lower(User.email) == email).first()
    if not u or not u.check_password(password) or not u.active:
        return jsonify({"msg": "Invalid email or password"}), 401

    claims = {"role": u.role.name if u.role else None}
    if u.department:
        claims["department"] = u.department

    token = create_access_token(identity=str(u.id), additional_claims=claims)
    response = jsonify(access_token=token, user=_serialize_user(u))
    set_access_cookies(response, token)
    return response


@bp.get("/me")
@jwt_required()
def me():
    user = current_user()
    if user is None:
        return jsonify({"msg": "User not found"}), 404
    return jsonify(_serialize_user(user))


@bp.post("/logout")
def logout():
    response = jsonify({"msg": "Logged out"})
    unset_jwt_cookies(response)
    return response
