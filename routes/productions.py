from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Company, Product, Production, ProductionRegister, SeedClass, Variety
from permissions import current_user, has_permission
from production_io import (
    XLSX_MIMETYPE,
    ImportFileError,
    build_export_workbook,
    build_template_workbook,
    import_productions,
    lot_number_from_filename,
    preview_table,
    read_qr_token,
    read_table,
)
from register_codes import RegisterCodeError, compute_register_range
from register_generation import GenerationError, bulk_generate, start_generation
from schemas import (
    REGISTER_LOCKED_FIELDS,
    ProductionInputSchema,
    ProductionRegisterSchema,
    ProductionSchema,
)

bp = Blueprint("productions", __name__, url_prefix="/api/productions")
production_schema = ProductionSchema()
production_input_schema = ProductionInputSchema()
registers_schema = ProductionRegisterSchema(many=True)

MAX_PER_PAGE = 200
JOB_ID_REGEX = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
SORTABLE_COLUMNS = {
    "id": Production.id,
    "lot_number": Production.lot_number,
    "group_number": Production.group_number,
    "lot_total": Production.lot_total,
    "created_at": Production.created_at,
    "harvest_date": Production.cert_realization_harvest_date,
    "import_qr_at": Production.import_qr_at,
}
REFERENCE_CHECKS = (
    ("product_id", Product),
    ("company_id", Company),
    ("seed_source_company_id", Company),
    ("target_seed_class_id", SeedClass),
    ("seed_source_seed_class_id", SeedClass),
    ("lot_seed_class_id", SeedClass),
    ("seed_source_male_variety_id", Variety),
    ("seed_source_female_variety_id", Variety),
    ("lot_variety_id", Variety),
)


def _build_error(message: str, status: int = 400, details: Any = None):
    payload: dict[str, Any] = {"ok": False, "error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None


def _parse_positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _serialize_production(production: Production, *, include_counts: bool = False) -> dict[str, Any]:
    payload = production_schema.dump(production)
    try:
        payload["register_range"] = production.register_range().to_dict()
    except RegisterCodeError as exc:
        payload["register_range"] = None
        payload["register_range_error"] = str(exc)
    if include_counts:
        payload["register_count"] = production.registers.count()
    return payload


def _missing_references(data: dict[str, Any]) -> list[str]:
    missing = []
    for field, model in REFERENCE_CHECKS:
        value = data.get(field)
        if value is not None and db.session.get(model, value) is None:
            missing.append(f"{field} {value} does not exist")
    return missing


def _duplicate_exists(group_number: str, lot_number: str, exclude_id: int | None = None) -> bool:
    query = Production.query.filter(
        Production.group_number == group_number,
        Production.lot_number == lot_number,
    )
    if exclude_id is not None:
        query = query.filter(Production.id != exclude_id)
    return query.first() is not None


def _range_error(values: dict[str, Any]) -> str | None:
    try:
        compute_register_range(
            values["code_1"],
            values["code_2"],
            values["code_3"],
            values["code_4"],
            values["lot_total"],
            values.get("lab_result_serial_number"),
        )
    except RegisterCodeError as exc:
        return str(exc)
    return None


def _commit_or_error(event: str, payload: dict[str, Any]):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error({"event": f"{event}_failed", "error_type": type(exc).__name__, **payload})
        return _build_error("Unable to save the production right now.", 500)
    current_app.logger.info({"event": event, **payload})
    return None


def _filtered_query(filters: dict[str, Any]):
    query = Production.query
    status = (filters.get("status") or "").strip().lower()
    if status == "generated":
        query = query.filter(Production.import_qr_at.isnot(None))
    elif status == "not_generated":
        query = query.filter(Production.import_qr_at.is_(None))

    lot_numbers = filters.get("lot_numbers")
    if isinstance(lot_numbers, str):
        lot_numbers = [part.strip() for part in lot_numbers.split(",") if part.strip()]
    if lot_numbers:
        query = query.filter(Production.lot_number.in_(lot_numbers))

    production_ids = filters.get("production_ids")
    if production_ids:
        query = query.filter(Production.id.in_(production_ids))

    date_from = _parse_date(filters.get("date_from"))
    date_to = _parse_date(filters.get("date_to"))
    if date_from:
        query = query.filter(Production.cert_realization_harvest_date >= date_from)
    if date_to:
        query = query.filter(Production.cert_realization_harvest_date <= date_to)
    return query


@bp.get("")
@jwt_required()
def list_productions():
    if not has_permission("production.batch.view", "production.batch.manage"):
        return _build_error("Access denied", 403)

    params = request.args
    for key in ("date_from", "date_to"):
        if params.get(key) and _parse_date(params.get(key)) is None:
            return _build_error(f"Invalid {key} parameter.", 400)

    query = _filtered_query(
        {
            "status": params.get("status"),
            "lot_numbers": params.get("lot_numbers"),
            "date_from": params.get("date_from"),
            "date_to": params.get("date_to"),
        }
    )
    search = (params.get("q") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.outerjoin(Product, Product.id == Production.product_id).filter(
            or_(
                Production.lot_number.ilike(pattern),
                Production.group_number.ilike(pattern),
                Product.name.ilike(pattern),
            )
        )
    for key, column in (("company_id", Production.company_id), ("product_id", Production.product_id)):
        if params.get(key):
            try:
                query = query.filter(column == int(params[key]))
            except (TypeError, ValueError):
                return _build_error(f"Invalid {key} filter", 400)

    sort_by = params.get("sort_by") or "created_at"
    sort_column = SORTABLE_COLUMNS.get(sort_by)
    if sort_column is None:
        return _build_error(f"Cannot sort by {sort_by}.", 400)
    direction = (params.get("sort_dir") or "desc").lower()
    ordering = sort_column.asc() if direction == "asc" else sort_column.desc()

    page = _parse_positive_int(params.get("page"), 1)
    per_page = min(_parse_positive_int(params.get("per_page"), 25), MAX_PER_PAGE)
    total = query.count()
    items = query.order_by(ordering, Production.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return jsonify(
        {
            "items": [_serialize_production(item) for item in items],
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": math.ceil(total / per_page) if total else 0,
        }
    )


@bp.get("/<int:production_id>")
@jwt_required()
def get_production(production_id: int):
    if not has_permission("production.batch.view", "production.batch.manage"):
        return _build_error("Access denied", 403)
    production = db.session.get(Production, production_id)
    if production is None:
        return _build_error("Production not found", 404)
    return jsonify(_serialize_production(production, include_counts=True))


@bp.post("")
@jwt_required()
def create_production():
    if not has_permission("production.batch.manage"):
        return _build_error("Access denied", 403)
    try:
        data = production_input_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _build_error("Invalid production payload", 400, exc.messages)

    missing = _missing_references(data)
    if missing:
        return _build_error("Unknown references", 400, missing)
    range_error = _range_error(data)
    if range_error:
        return _build_error(range_error, 400)
    if _duplicate_exists(data["group_number"], data["lot_number"]):
        return _build_error("A production with this group and lot number already exists", 409)

    production = Production(**data)
    db.session.add(production)
    error = _commit_or_error("production_created", {"lot_number": data["lot_number"]})
    if error:
        return error
    return jsonify(_serialize_production(production, include_counts=True)), 201


@bp.route("/<int:production_id>", methods=["PUT", "PATCH"])
@jwt_required()
def update_production(production_id: int):
    if not has_permission("production.batch.manage"):
        return _build_error("Access denied", 403)
    production = db.session.get(Production, production_id)
    if production is None:
        return _build_error("Production not found", 404)

    try:
        data = production_input_schema.load(
            request.get_json(silent=True) or {},
            partial=request.method == "PATCH",
        )
    except ValidationError as exc:
        return _build_error("Invalid production payload", 400, exc.messages)

    if production.is_generated:
        changed = [
            field
            for field in REGISTER_LOCKED_FIELDS
            if field in data and data[field] != getattr(production, field)
        ]
        if changed:
            return _build_error(
                "Registers were already generated; these fields can no longer change",
                409,
                changed,
            )

    missing = _missing_references(data)
    if missing:
        return _build_error("Unknown references", 400, missing)

    merged = {field: getattr(production, field) for field in REGISTER_LOCKED_FIELDS}
    merged.update({field: data[field] for field in REGISTER_LOCKED_FIELDS if field in data})
    range_error = _range_error(merged)
    if range_error:
        return _build_error(range_error, 400)

    group_number = data.get("group_number", production.group_number)
    lot_number = data.get("lot_number", production.lot_number)
    if _duplicate_exists(group_number, lot_number, exclude_id=production.id):
        return _build_error("A production with this group and lot number already exists", 409)

    for field, value in data.items():
        setattr(production, field, value)
    error = _commit_or_error("production_updated", {"production_id": production.id})
    if error:
        return error
    return jsonify(_serialize_production(production, include_counts=True))


@bp.delete("/<int:production_id>")
@jwt_required()
def delete_production(production_id: int):
    if not has_permission("production.batch.manage"):
        return _build_error("Access denied", 403)
    production = db.session.get(Production, production_id)
    if production is None:
        return _build_error("Production not found", 404)
    if production.is_generated:
        return _build_error("Productions with generated registers cannot be deleted", 409)

    production.registers.delete(synchronize_session=False)
    db.session.delete(production)
    error = _commit_or_error("production_deleted", {"production_id": production_id})
    if error:
        return error
    return jsonify({"ok": True})


@bp.get("/<int:production_id>/registers")
@jwt_required()
def list_registers(production_id: int):
    if not has_permission("production.register.view", "production.register.manage"):
        return _build_error("Access denied", 403)
    production = db.session.get(Production, production_id)
    if production is None:
        return _build_error("Production not found", 404)

    query = production.registers
    search = (request.args.get("q") or "").strip()
    if search:
        query = query.filter(
            or_(
                ProductionRegister.serial_number.ilike(f"%{search}%"),
                ProductionRegister.search_key.ilike(f"%{search}%"),
            )
        )

    page = _parse_positive_int(request.args.get("page"), 1)
    per_page = min(_parse_positive_int(request.args.get("per_page"), 100), MAX_PER_PAGE)
    total = query.count()
    items = (
        query.order_by(func.length(ProductionRegister.serial_number), ProductionRegister.serial_number)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return jsonify(
        {
            "items": registers_schema.dump(items),
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": math.ceil(total / per_page) if total else 0,
        }
    )


@bp.post("/<int:production_id>/registers/generate")
@jwt_required()
def generate_production_registers(production_id: int):
    if not has_permission("production.register.manage"):
        return _build_error("Access denied", 403)

    payload = request.get_json(silent=True) or {}
    job_id = payload.get("job_id")
    if job_id is not None and not (isinstance(job_id, str) and JOB_ID_REGEX.match(job_id)):
        return _build_error("job_id must be 1-64 letters, digits, dashes or underscores.", 400)

    user = current_user()
    current_app.logger.info(
        {
            "event": "register_generation_requested",
            "production_id": production_id,
            "user_id": user.id if user else None,
            "resume": bool(payload.get("resume")),
        }
    )
    try:
        result = start_generation(
            production_id,
            payload.get("qr_token"),
            job_id=job_id,
            resume=bool(payload.get("resume")),
        )
    except GenerationError as exc:
        return jsonify({"ok": False, "error": exc.message, "job_id": exc.job_id}), exc.status

    return jsonify(
        {
            "ok": True,
            "production_id": result.production_id,
            "generated": result.generated,
            "total_batches": result.total_batches,
            "job_id": result.job_id,
        }
    )


@bp.post("/registers/bulk-generate")
@jwt_required()
def bulk_generate_registers():
    if not has_permission("production.register.manage"):
        return _build_error("Access denied", 403)

    payload = request.get_json(silent=True) or {}
    entries = payload.get("entries")
    if not isinstance(entries, list) or not entries:
        return _build_error("entries must be a non-empty list.", 400)
    if not all(isinstance(entry, dict) for entry in entries):
        return _build_error("Each entry must be an object with production_id and qr_token.", 400)

    return jsonify(bulk_generate(entries))


@bp.post("/tokens/preview")
@jwt_required()
def preview_tokens():
    if not has_permission("production.register.manage"):
        return _build_error("Access denied", 403)

    files = request.files.getlist("files") or request.files.getlist("file")
    if not files:
        return _build_error("At least one token CSV file is required.", 400)

    entries: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []
    for file in files:
        file_name = file.filename or ""
        lot_number = lot_number_from_filename(file_name)
        try:
            token = read_qr_token(file)
        except ImportFileError as exc:
            errors.append({"file_name": file_name, "error": str(exc)})
            continue

        matches = Production.query.filter(Production.lot_number == lot_number).limit(2).all()
        if not matches:
            errors.append({"file_name": file_name, "error": f"No production with lot number {lot_number}"})
            continue
        if len(matches) > 1:
            errors.append({"file_name": file_name, "error": f"Lot number {lot_number} matches several productions"})
            continue

        production = matches[0]
        entries.append(
            {
                "file_name": file_name,
                "production_id": production.id,
                "lot_number": production.lot_number,
                "lot_total": production.lot_total,
                "qr_token": token,
                "already_generated": production.is_generated,
            }
        )

    return jsonify({"entries": entries, "errors": errors})


@bp.post("/import/preview")
@jwt_required()
def preview_import():
    if not has_permission("production.batch.manage"):
        return _build_error("Access denied", 403)
    try:
        return jsonify(preview_table(request.files.get("file")))
    except ImportFileError as exc:
        return _build_error(str(exc), 400)


@bp.post("/import")
@jwt_required()
def import_file():
    if not has_permission("production.batch.manage"):
        return _build_error("Access denied", 403)
    try:
        _, rows = read_table(request.files.get("file"))
    except ImportFileError as exc:
        return _build_error(str(exc), 400)

    try:
        summary = import_productions(rows)
    except SQLAlchemyError:
        current_app.logger.exception("Production import failed")
        return _build_error("Unable to import productions right now.", 500)
    return jsonify(summary)


@bp.get("/template")
@jwt_required()
def download_template():
    if not has_permission("production.batch.manage"):
        return _build_error("Access denied", 403)
    return send_file(
        build_template_workbook(),
        as_attachment=True,
        download_name="production_import_template.xlsx",
        mimetype=XLSX_MIMETYPE,
    )


@bp.post("/export")
@jwt_required()
def export_productions():
    if not has_permission("production.batch.view", "production.batch.manage"):
        return _build_error("Access denied", 403)

    filters = request.get_json(silent=True) or {}
    for key in ("date_from", "date_to"):
        if filters.get(key) and _parse_date(filters.get(key)) is None:
            return _build_error(f"Invalid {key}.", 400)
    production_ids = filters.get("production_ids")
    if production_ids is not None and not (
        isinstance(production_ids, list) and all(isinstance(value, int) for value in production_ids)
    ):
        return _build_error("production_ids must be a list of integers.", 400)

    productions = (
        _filtered_query(filters)
        .order_by(Production.cert_realization_harvest_date.desc(), Production.id)
        .all()
    )
    if not productions:
        return _build_error("No productions match the export filters.", 400)

    current_app.logger.info({"event": "production_export", "count": len(productions)})
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    return send_file(
        build_export_workbook(productions),
        as_attachment=True,
        download_name=f"export_productions_{stamp}.xlsx",
        mimetype=XLSX_MIMETYPE,
    )
