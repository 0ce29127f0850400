from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import notifications
from extensions import db
from models import (
    DEPARTMENTS,
    Complaint,
    ComplaintAssignment,
    ComplaintCategory,
    ComplaintHistory,
    ComplaintInvestigation,
    ComplaintLabTest,
    ComplaintObservation,
    ComplaintProfile,
    ComplaintResponse,
    ComplaintStatus,
    User,
)
from permissions import current_user, has_permission
from schemas import (
    ComplaintAssignmentSchema,
    ComplaintCategorySchema,
    ComplaintCreateSchema,
    ComplaintFeedbackSchema,
    ComplaintHistorySchema,
    ComplaintInvestigationSchema,
    ComplaintLabTestSchema,
    ComplaintObservationSchema,
    ComplaintResponseSchema,
    ComplaintSchema,
)

bp = Blueprint("complaints", __name__, url_prefix="/api/complaints")

complaint_schema = ComplaintSchema()
complaint_create_schema = ComplaintCreateSchema()
feedback_schema = ComplaintFeedbackSchema()
investigation_schema = ComplaintInvestigationSchema()
observation_schema = ComplaintObservationSchema()
lab_test_schema = ComplaintLabTestSchema()
category_schema = ComplaintCategorySchema()
responses_schema = ComplaintResponseSchema(many=True)
history_schema = ComplaintHistorySchema(many=True)
assignment_schema = ComplaintAssignmentSchema()

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
FALLBACK_COMPLAINT_TYPE = "other"

# Case-handling forms stored one per complaint:
# stage -> (relationship, model, schema, author id field, author name field, label)
STAGES = {
    "observation": (
        "observation",
        ComplaintObservation,
        observation_schema,
        "observer_id",
        "observer_name",
        "observation",
    ),
    "investigation": (
        "investigation",
        ComplaintInvestigation,
        investigation_schema,
        "investigator_id",
        "investigator_name",
        "investigation",
    ),
    "lab_test": (
        "lab_test",
        ComplaintLabTest,
        lab_test_schema,
        "technician_id",
        "lab_technician_name",
        "lab test",
    ),
}


def _build_error(message: str, status: int = 400, details: Any = None):
    payload: dict[str, Any] = {"ok": False, "error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _commit(event: str, payload: dict[str, Any]) -> bool:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error({"event": f"{event}_failed", "error_type": type(exc).__name__, **payload})
        return False
    current_app.logger.info({"event": event, **payload})
    return True


def _status(complaint: Complaint) -> ComplaintStatus:
    return ComplaintStatus(complaint.status)


def _next_complaint_number(now: datetime) -> str:
    prefix = f"{current_app.config.get('COMPLAINT_NUMBER_PREFIX', 'ADV-COMP')}-{now.year}-"
    numbers = db.session.query(Complaint.complaint_number).filter(Complaint.complaint_number.like(f"{prefix}%"))
    highest = 0
    for (number,) in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:04d}"


def _record_history(
    complaint: Complaint,
    action: str,
    *,
    old_value: Any = None,
    new_value: Any = None,
    user_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> None:
    complaint.history.append(
        ComplaintHistory(
            action=action,
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
            created_by=user_id,
            notes=notes,
            created_at=datetime.utcnow(),
        )
    )


def _load_complaint(complaint_id: int) -> Optional[Complaint]:
    return db.session.get(Complaint, complaint_id)


def _profile_for(user_id: Optional[int]) -> Optional[ComplaintProfile]:
    if user_id is None:
        return None
    return ComplaintProfile.query.filter_by(user_id=user_id).first()


def _release_assignment(complaint: Complaint, actor_id: Optional[int], *, resolved: bool = False) -> None:
    now = datetime.utcnow()
    for assignment in complaint.assignments:
        if not assignment.is_active:
            continue
        assignment.is_active = False
        assignment.unassigned_at = now
        assignment.unassigned_by = actor_id
        profile = _profile_for(assignment.assigned_to)
        if profile is None:
            continue
        profile.current_assigned_count = max((profile.current_assigned_count or 0) - 1, 0)
        if resolved:
            resolved_count = (profile.total_resolved or 0) + 1
            hours = max((now - complaint.created_at).total_seconds() / 3600, 0.0)
            previous_avg = profile.avg_resolution_hours or 0.0
            profile.avg_resolution_hours = round(
                previous_avg + (hours - previous_avg) / resolved_count, 2
            )
            profile.total_resolved = resolved_count


def _assign(
    complaint: Complaint,
    profile: ComplaintProfile,
    *,
    department: str,
    actor_id: Optional[int],
    reason: str,
) -> Optional[int]:
    previous_assignee = complaint.assigned_to
    _release_assignment(complaint, actor_id)

    now = datetime.utcnow()
    complaint.assignments.append(
        ComplaintAssignment(
            assigned_to=profile.user_id,
            assigned_by=actor_id,
            assignment_reason=reason,
            previous_assignee=previous_assignee,
            is_active=True,
            assigned_at=now,
        )
    )
    profile.current_assigned_count = (profile.current_assigned_count or 0) + 1
    complaint.assigned_to = profile.user_id
    complaint.assigned_by = actor_id
    complaint.assigned_at = now
    complaint.department = department
    _record_history(
        complaint,
        "assigned",
        old_value=previous_assignee,
        new_value=profile.user_id,
        user_id=actor_id,
        notes=reason,
    )
    return previous_assignee


def _detail(complaint: Complaint) -> dict[str, Any]:
    payload = complaint_schema.dump(complaint)
    payload["responses"] = responses_schema.dump(complaint.responses)
    payload["history"] = history_schema.dump(complaint.history)
    active = complaint.active_assignment()
    payload["active_assignment"] = assignment_schema.dump(active) if active else None
    for stage, (attribute, _model, schema, *_rest) in STAGES.items():
        record = getattr(complaint, attribute)
        payload[stage] = schema.dump(record) if record is not None else None
    return payload


def _resolve_category(code: str):
    """Return ``(category, error)`` for a submitted complaint type."""

    category = ComplaintCategory.query.filter_by(code=code, is_active=True).first()
    if category is not None or code == FALLBACK_COMPLAINT_TYPE:
        return category, None
    valid = [
        row.code
        for row in ComplaintCategory.query.filter_by(is_active=True).order_by(
            ComplaintCategory.sort_order, ComplaintCategory.id
        )
    ]
    valid.append(FALLBACK_COMPLAINT_TYPE)
    return None, f"Unknown complaint type {code}. Use one of: {', '.join(valid)}"


def _get_stage(complaint_id: int, stage: str):
    if not has_permission("complaint.view", "complaint.respond"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)
    attribute, _model, schema, *_rest = STAGES[stage]
    record = getattr(complaint, attribute)
    if record is None:
        return jsonify(None)
    return jsonify(schema.dump(record))


def _save_stage(complaint_id: int, stage: str):
    if not has_permission("complaint.respond"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)

    attribute, model, schema, author_id_field, author_name_field, label = STAGES[stage]
    record = getattr(complaint, attribute)
    try:
        data = schema.load(request.get_json(silent=True) or {}, partial=record is not None)
    except ValidationError as exc:
        return _build_error(f"Invalid {label} payload", 400, exc.messages)

    user = current_user()
    created = record is None
    if created:
        record = model()
        setattr(complaint, attribute, record)
        if data.get(author_id_field) is None and user is not None:
            data[author_id_field] = user.id
            data.setdefault(author_name_field, user.name)
    for field, value in data.items():
        setattr(record, field, value)
    _record_history(
        complaint,
        f"{stage}_created" if created else f"{stage}_updated",
        user_id=user.id if user else None,
    )
    if not _commit(f"complaint_{stage}_saved", {"complaint_id": complaint.id, "created": created}):
        return _build_error(f"Unable to save the {label} right now.", 500)
    return jsonify(schema.dump(record)), 201 if created else 200


def _public_view(complaint: Complaint) -> dict[str, Any]:
    return {
        "complaint_number": complaint.complaint_number,
        "subject": complaint.subject,
        "complaint_type": complaint.complaint_type,
        "status": _status(complaint).value,
        "created_at": complaint.created_at.isoformat() if complaint.created_at else None,
        "updated_at": complaint.updated_at.isoformat() if complaint.updated_at else None,
        "resolved_at": complaint.resolved_at.isoformat() if complaint.resolved_at else None,
        "resolution": complaint.resolution,
        "customer_satisfaction_rating": complaint.customer_satisfaction_rating,
        "can_give_feedback": _status(complaint).is_final and complaint.feedback_submitted_at is None,
        "responses": responses_schema.dump(
            [response for response in complaint.responses if not response.is_internal]
        ),
    }


# --- public -------------------------------------------------------------------


@bp.post("")
def create_complaint():
    try:
        data = complaint_create_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _build_error("Invalid complaint payload", 400, exc.messages)
    category, error = _resolve_category(data["complaint_type"])
    if error:
        return _build_error("Invalid complaint payload", 400, {"complaint_type": [error]})

    now = datetime.utcnow()
    complaint = Complaint(
        complaint_number=_next_complaint_number(now),
        status=ComplaintStatus.submitted,
        department=category.auto_assign_department if category else None,
        created_at=now,
        updated_at=now,
        **data,
    )
    _record_history(complaint, "created", new_value=ComplaintStatus.submitted.value)
    db.session.add(complaint)
    if not _commit("complaint_created", {"complaint_number": complaint.complaint_number}):
        return _build_error("Unable to submit the complaint right now.", 500)

    notifications.complaint_received(complaint)
    return (
        jsonify(
            {
                "ok": True,
                "id": complaint.id,
                "complaint_number": complaint.complaint_number,
                "status": _status(complaint).value,
            }
        ),
        201,
    )


@bp.get("/categories")
def list_public_categories():
    categories = (
        ComplaintCategory.query.filter_by(is_active=True)
        .order_by(ComplaintCategory.sort_order, ComplaintCategory.id)
        .all()
    )
    return jsonify(
        [
            {"code": category.code, "name": category.name, "description": category.description}
            for category in categories
        ]
    )


@bp.get("/track/<complaint_number>")
def track_complaint(complaint_number: str):
    complaint = Complaint.query.filter_by(complaint_number=complaint_number.strip()).first()
    if complaint is None:
        return _build_error("Complaint not found", 404)
    return jsonify(_public_view(complaint))


@bp.post("/<int:complaint_id>/feedback")
def submit_feedback(complaint_id: int):
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)
    try:
        data = feedback_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _build_error("Invalid feedback", 400, exc.messages)
    if not _status(complaint).is_final:
        return _build_error("Feedback can only be given once the complaint is resolved", 400)
    if complaint.feedback_submitted_at is not None:
        return _build_error("Feedback was already submitted", 409)

    now = datetime.utcnow()
    complaint.customer_satisfaction_rating = data["rating"]
    complaint.customer_feedback = data["feedback"]
    complaint.feedback_quick_answers = data["quick_answers"]
    complaint.feedback_submitted_at = now
    summary = f"Customer feedback: rating {data['rating']}/5"
    if data["feedback"]:
        summary = f"{summary}. {data['feedback']}"
    complaint.responses.append(
        ComplaintResponse(
            message=summary,
            response_type="feedback",
            admin_name="System",
            is_customer_response=True,
            is_internal=True,
            is_auto_response=True,
            created_at=now,
        )
    )
    _record_history(complaint, "feedback_submitted", new_value=data["rating"])
    if not _commit("complaint_feedback", {"complaint_id": complaint.id, "rating": data["rating"]}):
        return _build_error("Unable to save feedback right now.", 500)
    return jsonify({"ok": True, "rating": complaint.customer_satisfaction_rating})


# --- admin --------------------------------------------------------------------


@bp.get("")
@jwt_required()
def list_complaints():
    if not has_permission("complaint.view"):
        return _build_error("Access denied", 403)

    params = request.args
    query = Complaint.query
    status = (params.get("status") or "").strip()
    if status and status != "all":
        try:
            query = query.filter(Complaint.status == ComplaintStatus(status))
        except ValueError:
            return _build_error(f"Invalid status {status}", 400)
    number = (params.get("complaint_number") or "").strip()
    if number:
        query = query.filter(Complaint.complaint_number == number)
    department = (params.get("department") or "").strip()
    if department:
        query = query.filter(Complaint.department == department)

    try:
        limit = min(max(int(params.get("limit", DEFAULT_LIMIT)), 1), MAX_LIMIT)
        offset = max(int(params.get("offset", 0)), 0)
    except (TypeError, ValueError):
        return _build_error("Invalid pagination parameters.", 400)

    total = query.count()
    items = query.order_by(Complaint.created_at.desc(), Complaint.id.desc()).offset(offset).limit(limit).all()
    return jsonify(
        {
            "data": complaint_schema.dump(items, many=True),
            "total": total,
            "pagination": {"limit": limit, "offset": offset, "has_more": offset + len(items) < total},
        }
    )


@bp.get("/stats")
@jwt_required()
def complaint_stats():
    if not has_permission("complaint.analytics"):
        return _build_error("Access denied", 403)

    counts = {status.value: 0 for status in ComplaintStatus}
    for status, count in db.session.query(Complaint.status, func.count(Complaint.id)).group_by(Complaint.status):
        counts[ComplaintStatus(status).value] = count

    durations = [
        (resolved_at - created_at).total_seconds() / 3600
        for created_at, resolved_at in db.session.query(Complaint.created_at, Complaint.resolved_at).filter(
            Complaint.resolved_at.isnot(None)
        )
    ]
    open_total = sum(count for status, count in counts.items() if not ComplaintStatus(status).is_final)
    ratings = [
        rating
        for (rating,) in db.session.query(Complaint.customer_satisfaction_rating).filter(
            Complaint.customer_satisfaction_rating.isnot(None)
        )
    ]
    return jsonify(
        {
            "by_status": counts,
            "total": sum(counts.values()),
            "open": open_total,
            "unassigned": Complaint.query.filter(Complaint.assigned_to.is_(None)).count(),
            "avg_resolution_hours": round(sum(durations) / len(durations), 2) if durations else None,
            "avg_satisfaction": round(sum(ratings) / len(ratings), 2) if ratings else None,
        }
    )


@bp.get("/team")
@jwt_required()
def list_team():
    if not has_permission("complaint.manage_users", "complaint.assign"):
        return _build_error("Access denied", 403)
    profiles = ComplaintProfile.query.order_by(ComplaintProfile.department, ComplaintProfile.full_name).all()
    return jsonify(
        [
            {
                "user_id": profile.user_id,
                "full_name": profile.full_name,
                "department": profile.department,
                "is_active": profile.is_active,
                "max_assigned_complaints": profile.max_assigned_complaints,
                "current_assigned_count": profile.current_assigned_count,
                "total_resolved": profile.total_resolved,
                "avg_resolution_hours": profile.avg_resolution_hours,
            }
            for profile in profiles
        ]
    )


@bp.put("/team/<int:user_id>")
@jwt_required()
def upsert_team_member(user_id: int):
    if not has_permission("complaint.manage_users"):
        return _build_error("Access denied", 403)
    user = db.session.get(User, user_id)
    if user is None:
        return _build_error("User not found", 404)

    payload = request.get_json(silent=True) or {}
    department = payload.get("department") or user.department or "customer_service"
    if department not in DEPARTMENTS:
        return _build_error(f"Invalid department {department}", 400)
    try:
        max_assigned = int(payload.get("max_assigned_complaints", 10))
    except (TypeError, ValueError):
        return _build_error("max_assigned_complaints must be a number.", 400)
    if max_assigned < 1:
        return _build_error("max_assigned_complaints must be at least 1.", 400)

    profile = _profile_for(user_id)
    if profile is None:
        profile = ComplaintProfile(user_id=user_id, current_assigned_count=0, total_resolved=0)
        db.session.add(profile)
    profile.full_name = (payload.get("full_name") or user.name).strip()
    profile.department = department
    profile.max_assigned_complaints = max_assigned
    profile.is_active = bool(payload.get("is_active", True))
    if not _commit("complaint_profile_saved", {"user_id": user_id}):
        return _build_error("Unable to save the profile right now.", 500)
    return jsonify({"ok": True, "user_id": user_id, "department": profile.department})


@bp.get("/settings/categories")
@jwt_required()
def list_categories():
    if not has_permission("complaint.settings"):
        return _build_error("Access denied", 403)
    categories = ComplaintCategory.query.order_by(ComplaintCategory.sort_order, ComplaintCategory.id).all()
    return jsonify(category_schema.dump(categories, many=True))


@bp.post("/settings/categories")
@jwt_required()
def create_category():
    if not has_permission("complaint.settings"):
        return _build_error("Access denied", 403)
    try:
        data = category_schema.load(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return _build_error("Invalid category payload", 400, exc.messages)

    category = ComplaintCategory(**data)
    db.session.add(category)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _build_error(f"Category {data['code']} already exists", 409)
    current_app.logger.info({"event": "complaint_category_created", "code": category.code})
    return jsonify(category_schema.dump(category)), 201


@bp.put("/settings/categories/<int:category_id>")
@jwt_required()
def update_category(category_id: int):
    if not has_permission("complaint.settings"):
        return _build_error("Access denied", 403)
    category = db.session.get(ComplaintCategory, category_id)
    if category is None:
        return _build_error("Category not found", 404)
    try:
        data = category_schema.load(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as exc:
        return _build_error("Invalid category payload", 400, exc.messages)

    for field, value in data.items():
        setattr(category, field, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _build_error(f"Category {data.get('code')} already exists", 409)
    current_app.logger.info({"event": "complaint_category_updated", "code": category.code})
    return jsonify(category_schema.dump(category))


@bp.delete("/settings/categories/<int:category_id>")
@jwt_required()
def delete_category(category_id: int):
    if not has_permission("complaint.settings"):
        return _build_error("Access denied", 403)
    category = db.session.get(ComplaintCategory, category_id)
    if category is None:
        return _build_error("Category not found", 404)
    code = category.code
    db.session.delete(category)
    if not _commit("complaint_category_deleted", {"code": code}):
        return _build_error("Unable to delete the category right now.", 500)
    return jsonify({"ok": True})


@bp.get("/<int:complaint_id>")
@jwt_required()
def get_complaint(complaint_id: int):
    if not has_permission("complaint.view"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)
    return jsonify(_detail(complaint))


@bp.post("/<int:complaint_id>/status")
@jwt_required()
def change_status(complaint_id: int):
    if not has_permission("complaint.respond"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)

    payload = request.get_json(silent=True) or {}
    try:
        new_status = ComplaintStatus(payload.get("status"))
    except ValueError:
        valid = ", ".join(status.value for status in ComplaintStatus)
        return _build_error(f"Invalid status. Use one of: {valid}", 400)

    old_status = _status(complaint)
    if new_status == old_status:
        return jsonify({"ok": True, "changed": False, "status": old_status.value})

    user = current_user()
    actor_id = user.id if user else None
    complaint.status = new_status
    if new_status.is_final and complaint.resolved_at is None:
        complaint.resolved_at = datetime.utcnow()
        complaint.resolved_by = actor_id
    if new_status.is_final and not old_status.is_final:
        _release_assignment(complaint, actor_id, resolved=new_status is ComplaintStatus.resolved)
    _record_history(
        complaint,
        "status_changed",
        old_value=old_status.value,
        new_value=new_status.value,
        user_id=user.id if user else None,
        notes=payload.get("notes"),
    )
    if not _commit("complaint_status_changed", {"complaint_id": complaint.id, "status": new_status.value}):
        return _build_error("Unable to update the status right now.", 500)
    return jsonify({"ok": True, "changed": True, "status": new_status.value})


@bp.post("/<int:complaint_id>/assign")
@jwt_required()
def assign_complaint(complaint_id: int):
    if not has_permission("complaint.assign"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)

    payload = request.get_json(silent=True) or {}
    admin_id = payload.get("admin_id")
    department = payload.get("department")
    if not admin_id:
        return _build_error("admin_id is required", 400)
    if not department:
        return _build_error("department is required", 400)
    if department not in DEPARTMENTS:
        return _build_error(f"Invalid department {department}", 400)
    try:
        admin_id = int(admin_id)
    except (TypeError, ValueError):
        return _build_error("admin_id must be a number", 400)

    profile = ComplaintProfile.query.filter_by(user_id=admin_id, is_active=True).first()
    if profile is None:
        return _build_error("Target user not found or inactive", 404)
    if complaint.assigned_to != admin_id and not profile.has_capacity:
        return _build_error(f"User has reached maximum workload ({profile.max_assigned_complaints})", 400)

    user = current_user()
    previous_assignee = _assign(
        complaint,
        profile,
        department=department,
        actor_id=user.id if user else None,
        reason=payload.get("notes") or "Manual assignment",
    )
    if not _commit("complaint_assigned", {"complaint_id": complaint.id, "assigned_to": admin_id}):
        return _build_error("Failed to assign complaint", 500)
    return jsonify(
        {
            "ok": True,
            "assigned_to": profile.full_name,
            "department": department,
            "previous_assignee": previous_assignee,
        }
    )


@bp.post("/<int:complaint_id>/auto-assign")
@jwt_required()
def auto_assign_complaint(complaint_id: int):
    if not has_permission("complaint.assign"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)
    if complaint.assigned_to:
        return _build_error("Complaint is already assigned", 400)

    payload = request.get_json(silent=True) or {}
    department = payload.get("department") or complaint.department or "customer_service"
    if department not in DEPARTMENTS:
        return _build_error(f"Invalid department {department}", 400)

    candidates = (
        ComplaintProfile.query.filter_by(department=department, is_active=True)
        .order_by(ComplaintProfile.current_assigned_count, ComplaintProfile.id)
        .all()
    )
    if not candidates:
        return _build_error(f"No active users found in {department} department", 400)
    eligible = [profile for profile in candidates if profile.has_capacity]
    if not eligible:
        return _build_error("All users in department have reached maximum workload", 400)

    profile = eligible[0]
    _assign(
        complaint,
        profile,
        department=department,
        actor_id=None,
        reason=f"Auto-assigned to {department} based on workload",
    )
    if not _commit("complaint_auto_assigned", {"complaint_id": complaint.id, "assigned_to": profile.user_id}):
        return _build_error("Failed to assign complaint", 500)
    return jsonify(
        {
            "ok": True,
            "assigned_to": {
                "user_id": profile.user_id,
                "name": profile.full_name,
                "department": profile.department,
                "current_load": profile.current_assigned_count,
                "max_load": profile.max_assigned_complaints,
            },
        }
    )


@bp.post("/<int:complaint_id>/acknowledge")
@jwt_required()
def acknowledge_complaint(complaint_id: int):
    if not has_permission("complaint.respond"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)
    if _status(complaint).is_final:
        return _build_error("Complaint is already closed", 400)

    payload = request.get_json(silent=True) or {}
    hybrid = str(payload.get("replacement_hybrid") or "").strip()
    try:
        quantity = int(payload.get("replacement_qty"))
    except (TypeError, ValueError):
        quantity = 0
    if quantity <= 0 or not hybrid:
        return _build_error("replacement_qty and replacement_hybrid are required", 400)

    user = current_user()
    old_status = _status(complaint)
    now = datetime.utcnow()
    complaint.status = ComplaintStatus.acknowledged
    complaint.acknowledged_replacement_qty = quantity
    complaint.acknowledged_replacement_hybrid = hybrid
    complaint.responses.append(
        ComplaintResponse(
            message=f"Complaint acknowledged. Replacement: {quantity} x {hybrid}.",
            response_type="acknowledgement",
            admin_id=user.id if user else None,
            admin_name=user.name if user else None,
            is_auto_response=True,
            created_at=now,
        )
    )
    _record_history(
        complaint,
        "acknowledged",
        old_value=old_status.value,
        new_value=ComplaintStatus.acknowledged.value,
        user_id=user.id if user else None,
    )
    if not _commit("complaint_acknowledged", {"complaint_id": complaint.id}):
        return _build_error("Unable to acknowledge the complaint right now.", 500)

    notifications.complaint_acknowledged(complaint)
    return jsonify({"ok": True, "status": ComplaintStatus.acknowledged.value})


@bp.post("/<int:complaint_id>/responses")
@jwt_required()
def add_response(complaint_id: int):
    if not has_permission("complaint.respond"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)

    payload = request.get_json(silent=True) or {}
    message = str(payload.get("message") or "").strip()
    if not message:
        return _build_error("message is required", 400)

    user = current_user()
    is_internal = bool(payload.get("is_internal"))
    response = ComplaintResponse(
        message=message,
        response_type=str(payload.get("response_type") or "reply"),
        admin_id=user.id if user else None,
        admin_name=user.name if user else None,
        is_internal=is_internal,
        created_at=datetime.utcnow(),
    )
    complaint.responses.append(response)
    _record_history(
        complaint,
        "response_added",
        new_value="internal" if is_internal else "customer",
        user_id=user.id if user else None,
    )
    if not _commit("complaint_response_added", {"complaint_id": complaint.id, "internal": is_internal}):
        return _build_error("Unable to save the response right now.", 500)

    if not is_internal:
        notifications.complaint_response(complaint, message, response.admin_name)
    return jsonify({"ok": True, "id": response.id}), 201


@bp.get("/<int:complaint_id>/observation")
@jwt_required()
def get_observation(complaint_id: int):
    return _get_stage(complaint_id, "observation")


@bp.post("/<int:complaint_id>/observation")
@jwt_required()
def save_observation(complaint_id: int):
    return _save_stage(complaint_id, "observation")


@bp.get("/<int:complaint_id>/investigation")
@jwt_required()
def get_investigation(complaint_id: int):
    return _get_stage(complaint_id, "investigation")


@bp.post("/<int:complaint_id>/investigation")
@jwt_required()
def save_investigation(complaint_id: int):
    return _save_stage(complaint_id, "investigation")


@bp.get("/<int:complaint_id>/lab-testing")
@jwt_required()
def get_lab_test(complaint_id: int):
    return _get_stage(complaint_id, "lab_test")


@bp.post("/<int:complaint_id>/lab-testing")
@jwt_required()
def save_lab_test(complaint_id: int):
    return _save_stage(complaint_id, "lab_test")


@bp.post("/<int:complaint_id>/resolve")
@jwt_required()
def resolve_complaint(complaint_id: int):
    if not has_permission("complaint.respond"):
        return _build_error("Access denied", 403)
    complaint = _load_complaint(complaint_id)
    if complaint is None:
        return _build_error("Complaint not found", 404)
    if _status(complaint).is_final:
        return _build_error("Complaint is already resolved or closed", 400)

    payload = request.get_json(silent=True) or {}
    resolution = str(payload.get("resolution") or "").strip()
    if not resolution:
        return _build_error("resolution is required", 400)

    user = current_user()
    actor_id = user.id if user else None
    old_status = _status(complaint)
    complaint.status = ComplaintStatus.resolved
    complaint.resolution = resolution
    complaint.resolution_summary = payload.get("resolution_summary")
    complaint.resolved_at = datetime.utcnow()
    complaint.resolved_by = actor_id
    _release_assignment(complaint, actor_id, resolved=True)
    _record_history(
        complaint,
        "resolved",
        old_value=old_status.value,
        new_value=ComplaintStatus.resolved.value,
        user_id=actor_id,
        notes=complaint.resolution_summary,
    )
    if not _commit("complaint_resolved", {"complaint_id": complaint.id}):
        return _build_error("Unable to resolve the complaint right now.", 500)

    notifications.complaint_resolved(complaint)
    return jsonify({"ok": True, "status": ComplaintStatus.resolved.value})
