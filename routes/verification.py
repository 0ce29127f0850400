from __future__ import annotations

from datetime import date
from typing import Any, Optional

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Production, ProductionRegister, VerificationFailureReport
from notifications import verification_failure_reported

bp = Blueprint("verification", __name__, url_prefix="/api/public")

MAX_CODE_LENGTH = 120


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _name(related) -> Optional[str]:
    return related.name if related is not None else None


def _product_data(production: Production, register: Optional[ProductionRegister]) -> dict[str, Any]:
    product = production.product
    company = production.company
    province = company.province if company is not None else None
    if register is not None:
        production_code = register.production_code
    else:
        production_code = f"{production.code_1}{production.code_2}{production.code_3}{production.code_4}"

    return {
        "product_name": _name(product),
        "product_image": product.photo_path if product is not None else None,
        "plant_type": product.plant_type if product is not None else None,
        "active_ingredients": list(product.active_ingredients or []) if product is not None else [],
        "search_key": register.search_key if register is not None else production.lot_number,
        "serial_number": register.serial_number if register is not None else None,
        "lot_number": production.lot_number,
        "seed_class": _name(production.lot_seed_class),
        "variety": _name(production.lot_variety),
        "pure_seed": production.test_param_pure_seed,
        "germination": production.test_param_germination,
        "moisture": production.test_param_moisture,
        "inert_matter": production.test_param_inert_matter,
        "other_variety": production.test_param_other_variety,
        "other_crop_seed": production.test_param_other_crop_seed,
        "cert_number": production.lab_result_certification_number,
        "group_number": production.group_number,
        "production_code": production_code,
        "harvest_date": _iso(production.cert_realization_harvest_date),
        "tested_date": _iso(production.lab_result_tested_date),
        "expired_date": _iso(production.lab_result_expired_date),
        "qr_code_link": register.qr_code_link if register is not None else None,
        "company_name": _name(company),
        "province": _name(province) or current_app.config.get("EXPORT_DEFAULT_PROVINCE"),
    }


def _not_found(code: str):
    return (
        jsonify(
            {
                "success": False,
                "message": f"Product with code {code} was not found.",
                "error_code": "NOT_FOUND",
                "reportable": True,
            }
        ),
        404,
    )


@bp.get("/verify/<path:code>")
def verify(code: str):
    code = (code or "").strip()
    if not code or len(code) > MAX_CODE_LENGTH:
        return jsonify({"success": False, "message": "Invalid code.", "error_code": "INVALID_CODE"}), 400

    register = (
        ProductionRegister.query.filter(
            or_(ProductionRegister.serial_number == code, ProductionRegister.search_key == code)
        )
        .order_by(ProductionRegister.id)
        .first()
    )
    if register is not None:
        production = register.production
        verification_type = "serial"
    else:
        production = Production.query.filter(Production.lot_number == code).order_by(Production.id).first()
        verification_type = "lot"

    if production is None:
        current_app.logger.info({"event": "verification_not_found", "code": code})
        return _not_found(code)

    return jsonify(
        {
            "success": True,
            "data": _product_data(production, register),
            "meta": {"model_type": "production", "verification_type": verification_type},
        }
    )


@bp.post("/report-failure")
def report_failure():
    payload = request.get_json(silent=True) or {}
    serial_number = str(payload.get("serial_number") or "").strip()
    error_message = str(payload.get("error_message") or "").strip() or None
    if not serial_number:
        return jsonify({"ok": False, "error": "serial_number is required"}), 400

    report = VerificationFailureReport(
        serial_number=serial_number[:MAX_CODE_LENGTH],
        error_message=error_message,
        reporter_ip=request.remote_addr,
    )
    try:
        db.session.add(report)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to store verification failure report")
        return jsonify({"ok": False, "error": "Unable to save the report right now."}), 500

    verification_failure_reported(report.serial_number, report.error_message)
    return jsonify({"ok": True, "id": report.id}), 201
