from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import Company, Product, Province, SeedClass, Variety
from permissions import has_permission
from schemas import CompanySchema, ProductSchema, ProvinceSchema, SeedClassSchema, VarietySchema

bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")

# resource name -> (model, schema, ordering column)
RESOURCES = {
    "companies": (Company, CompanySchema(), Company.name),
    "provinces": (Province, ProvinceSchema(), Province.name),
    "products": (Product, ProductSchema(), Product.name),
    "varieties": (Variety, VarietySchema(), Variety.name),
    "seed-classes": (SeedClass, SeedClassSchema(), SeedClass.name),
}


def _build_error(message: str, status: int = 400, details: Any = None):
    payload: dict[str, Any] = {"ok": False, "error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _resource(name: str):
    resource = RESOURCES.get(name)
    if resource is None:
        abort(404)
    return resource


@bp.get("/<resource>")
@jwt_required()
def list_items(resource: str):
    model, schema, order_column = _resource(resource)
    if not has_permission("catalog.view", "catalog.manage", "production.batch.view", "production.batch.manage"):
        return _build_error("Access denied", 403)

    query = model.query
    search = (request.args.get("q") or "").strip()
    if search:
        query = query.filter(model.name.ilike(f"%{search}%"))
    return jsonify(schema.dump(query.order_by(order_column).all(), many=True))


@bp.get("/<resource>/<int:item_id>")
@jwt_required()
def get_item(resource: str, item_id: int):
    model, schema, _ = _resource(resource)
    if not has_permission("catalog.view", "catalog.manage"):
        return _build_error("Access denied", 403)
    item = db.session.get(model, item_id)
    if item is None:
        return _build_error("Not found", 404)
    return jsonify(schema.dump(item))


@bp.post("/<resource>")
@jwt_required()
def create_item(resource: str):
    model, schema, _ = _resource(resource)
    if not has_permission("catalog.manage"):
        return _build_error("Access denied", 403)
    try:
        data = schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _build_error("Invalid payload", 400, exc.messages)

    item = model(**data)
    db.session.add(item)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _build_error("An item with the same name already exists", 409)
    return jsonify(schema.dump(item)), 201


@bp.put("/<resource>/<int:item_id>")
@jwt_required()
def update_item(resource: str, item_id: int):
    model, schema, _ = _resource(resource)
    if not has_permission("catalog.manage"):
        return _build_error("Access denied", 403)
    item = db.session.get(model, item_id)
    if item is None:
        return _build_error("Not found", 404)
    try:
        data = schema.load(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as exc:
        return _build_error("Invalid payload", 400, exc.messages)

    for field, value in data.items():
        setattr(item, field, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _build_error("An item with the same name already exists", 409)
    return jsonify(schema.dump(item))


@bp.delete("/<resource>/<int:item_id>")
@jwt_required()
def delete_item(resource: str, item_id: int):
    model, _, _ = _resource(resource)
    if not has_permission("catalog.manage"):
        return _build_error("Access denied", 403)
    item = db.session.get(model, item_id)
    if item is None:
        return _build_error("Not found", 404)
    db.session.delete(item)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _build_error("Item is still referenced by other records", 409)
    return jsonify({"ok": True})
