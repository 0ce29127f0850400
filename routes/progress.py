from __future__ import annotations

import json
import time

from flask import Blueprint, Response, current_app, jsonify, stream_with_context
from flask_jwt_extended import jwt_required

from permissions import has_permission
from progress_store import ProgressNotFound, get_progress_store

bp = Blueprint("progress", __name__, url_prefix="/api/progress")

STREAM_TICK_SECONDS = 0.1


def _snapshot(job_id: str) -> dict:
    payload = get_progress_store().snapshot(job_id)
    payload["poll_interval_ms"] = current_app.config.get("PROGRESS_POLL_INTERVAL_MS", 300)
    return payload


def _wait_for_snapshot(job_id: str) -> dict:
    """Snapshot of ``job_id``, polling up to the configured wait for it to appear."""

    deadline = time.monotonic() + float(current_app.config.get("PROGRESS_STREAM_WAIT_SECONDS", 5.0))
    while True:
        try:
            return _snapshot(job_id)
        except ProgressNotFound:
            if time.monotonic() >= deadline:
                raise
        time.sleep(STREAM_TICK_SECONDS)


@bp.get("/<job_id>")
@jwt_required()
def get_progress(job_id: str):
    if not has_permission("production.register.view", "production.register.manage"):
        return jsonify({"ok": False, "error": "Access denied"}), 403
    try:
        return jsonify(_snapshot(job_id))
    except ProgressNotFound:
        return jsonify({"ok": False, "error": "Job not found or expired", "job_id": job_id}), 404


@bp.get("/<job_id>/stream")
@jwt_required()
def stream_progress(job_id: str):
    """Server-Sent Events feed that ends once the job reaches a terminal state.

    A stream opened just before its generation request arrives waits up to
    ``PROGRESS_STREAM_WAIT_SECONDS`` for the record to appear.
    """

    if not has_permission("production.register.view", "production.register.manage"):
        return jsonify({"ok": False, "error": "Access denied"}), 403
    try:
        first = _wait_for_snapshot(job_id)
    except ProgressNotFound:
        return jsonify({"ok": False, "error": "Job not found or expired", "job_id": job_id}), 404

    @stream_with_context
    def _events():
        payload = first
        last_sent = None
        while True:
            if payload != last_sent:
                yield f"data: {json.dumps(payload)}\n\n"
                last_sent = payload
            if payload["terminal"]:
                return
            time.sleep(STREAM_TICK_SECONDS)
            try:
                payload = _snapshot(job_id)
            except ProgressNotFound:
                yield f"event: expired\ndata: {json.dumps({'job_id': job_id})}\n\n"
                return

    return Response(
        _events(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
