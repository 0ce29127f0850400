from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import ADMIN_ROLE_NAME, Permission, Role
from permissions import has_permission
from schemas import PermissionSchema, RoleSchema, dump_role

bp = Blueprint("roles", __name__, url_prefix="/api/roles")
role_schema = RoleSchema()
permissions_schema = PermissionSchema(many=True)


def _build_error(message: str, status: int = 400, details: Any = None):
    payload: dict[str, Any] = {"ok": False, "error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _resolve_permissions(names: list[str]) -> list[Permission]:
    if not names:
        return []
    return Permission.query.filter(Permission.name.in_(names)).order_by(Permission.name).all()


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    query = Role.query.filter(func.lower(Role.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Role.id != exclude_id)
    return query.first() is not None


@bp.get("/permissions")
@jwt_required()
def list_permissions():
    if not has_permission("users.manage"):
        return _build_error("Access denied", 403)
    return jsonify(permissions_schema.dump(Permission.query.order_by(Permission.name).all()))


@bp.get("")
@jwt_required()
def list_roles():
    if not has_permission("users.manage"):
        return _build_error("Access denied", 403)
    roles = Role.query.order_by(Role.name).all()
    return jsonify([dump_role(role) for role in roles])


@bp.get("/<int:role_id>")
@jwt_required()
def get_role(role_id: int):
    if not has_permission("users.manage"):
        return _build_error("Access denied", 403)
    role = db.session.get(Role, role_id)
    if role is None:
        return _build_error("Role not found", 404)
    return jsonify(dump_role(role))


@bp.post("")
@jwt_required()
def create_role():
    if not has_permission("users.manage"):
        return _build_error("Access denied", 403)
    try:
        data = role_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _build_error("Invalid role payload", 400, exc.messages)

    if _name_taken(data["name"]):
        return _build_error("A role with this name already exists", 409)

    role = Role(name=data["name"], description=data.get("description"))
    role.permissions = _resolve_permissions(data["permissions"])
    try:
        db.session.add(role)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create role")
        return _build_error("Unable to save the role right now.", 500)
    return jsonify(dump_role(role)), 201


@bp.put("/<int:role_id>")
@jwt_required()
def update_role(role_id: int):
    if not has_permission("users.manage"):
        return _build_error("Access denied", 403)
    role = db.session.get(Role, role_id)
    if role is None:
        return _build_error("Role not found", 404)

    try:
        data = role_schema.load(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as exc:
        return _build_error("Invalid role payload", 400, exc.messages)

    if "name" in data and data["name"] != role.name:
        if role.name == ADMIN_ROLE_NAME:
            return _build_error("The admin role cannot be renamed", 409)
        if _name_taken(data["name"], exclude_id=role.id):
            return _build_error("A role with this name already exists", 409)
        role.name = data["name"]
    if "description" in data:
        role.description = data["description"]
    if "permissions" in data:
        role.permissions = _resolve_permissions(data["permissions"])

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to update role %s", role_id)
        return _build_error("Unable to save the role right now.", 500)
    return jsonify(dump_role(role))


@bp.delete("/<int:role_id>")
@jwt_required()
def delete_role(role_id: int):
    if not has_permission("users.manage"):
        return _build_error("Access denied", 403)
    role = db.session.get(Role, role_id)
    if role is None:
        return _build_error("Role not found", 404)
    if role.name == ADMIN_ROLE_NAME:
        return _build_error("The admin role cannot be deleted", 409)
    if role.users:
        return _build_error("Role is still assigned to users", 409)

    db.session.delete(role)
    db.session.commit()
    return jsonify({"ok": True})
