"""Chunked generation of production registers (one row per labelled unit)."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from flask import current_app
from sqlalchemy import func, insert
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Production, ProductionRegister
from progress_store import ProgressNotFound, ProgressStore, get_progress_store
from register_codes import RegisterCodeError, coerce_count, register_code_for


class GenerationError(RuntimeError):
    """Raised when register generation is refused or cannot finish."""

    def __init__(self, message: str, status: int = 400, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.job_id = job_id


@dataclass(frozen=True)
class GenerationResult:
    job_id: str
    production_id: int
    generated: int
    total_batches: int


def batch_size_for(total_records: int) -> int:
    if total_records > 50000:
        return 2000
    if total_records > 20000:
        return 1000
    if total_records < 100:
        return 50
    return 500


def new_job_id() -> str:
    return uuid.uuid4().hex


def build_qr_link(base_url: str, qr_token: str, serial_number: str) -> str:
    return f"{base_url}?token={qr_token}&seri={serial_number}"


def _log_generation_event(event: str, payload: dict[str, Any]) -> None:
    current_app.logger.info({"event": event, **payload})


def _log_generation_error(payload: dict[str, Any]) -> None:
    current_app.logger.error({"event": "register_generation_error", **payload})


def _build_rows(
    production: Production,
    qr_token: str,
    offsets: Iterable[int],
    start_serial: int,
    base_url: str,
) -> list[dict[str, Any]]:
    now = datetime.utcnow()
    rows: list[dict[str, Any]] = []
    for offset in offsets:
        serial_number = str(start_serial + offset)
        production_code = register_code_for(
            production.code_1,
            production.code_2,
            production.code_3,
            production.code_4,
            offset,
        )
        rows.append(
            {
                "production_id": production.id,
                "serial_number": serial_number,
                "production_code": production_code,
                "search_key": f"{production_code}{serial_number}",
                "qr_code_link": build_qr_link(base_url, qr_token, serial_number),
                "created_at": now,
                "updated_at": now,
            }
        )
    return rows


def _insert_chunk(rows: list[dict[str, Any]]) -> int:
    if not rows:
        return 0
    db.session.execute(insert(ProductionRegister), rows)
    return len(rows)


def _existing_serials(production_id: int) -> set[str]:
    serials = db.session.query(ProductionRegister.serial_number).filter(
        ProductionRegister.production_id == production_id
    )
    return {serial for (serial,) in serials}


def generate_registers(
    production: Production,
    qr_token: str,
    *,
    job_id: Optional[str] = None,
    store: Optional[ProgressStore] = None,
    base_url: Optional[str] = None,
    skip_existing: bool = False,
) -> GenerationResult:
    """Insert one register per unit of the lot, chunk by chunk.

    The caller is responsible for checking ``import_qr_at`` first. Running
    this twice on the same production inserts every register twice unless
    ``skip_existing`` is set.

    Each chunk is committed on its own. When a chunk fails, the chunk is
    rolled back, the progress record is marked ``error`` and the earlier
    chunks stay in place with ``import_qr_at`` still empty.
    """

    job_id = job_id or new_job_id()
    store = store or get_progress_store()
    base_url = base_url or current_app.config["VERIFICATION_BASE_URL"]

    total_records = coerce_count(production.lot_total)
    if total_records <= 0:
        raise GenerationError("Production lot_total is required to generate registers.", job_id=job_id)
    start_serial = coerce_count(production.lab_result_serial_number)
    if start_serial <= 0:
        raise GenerationError(
            "Production lab_result_serial_number must be a positive number to generate registers.",
            job_id=job_id,
        )
    try:
        register_code_for(
            production.code_1,
            production.code_2,
            production.code_3,
            production.code_4,
            total_records - 1,
        )
    except RegisterCodeError as exc:
        raise GenerationError(str(exc), job_id=job_id) from exc

    offsets = list(range(total_records))
    if skip_existing:
        existing = _existing_serials(production.id)
        offsets = [offset for offset in offsets if str(start_serial + offset) not in existing]

    batch_size = batch_size_for(total_records)
    chunks = [offsets[i : i + batch_size] for i in range(0, len(offsets), batch_size)]
    total_batches = len(chunks)
    already_present = total_records - len(offsets)

    store.start(
        job_id,
        total_batches,
        total_records,
        lot_number=production.lot_number,
        production_id=production.id,
        already_inserted=already_present,
    )

    start_time = time.monotonic()
    _log_generation_event(
        "register_generation_start",
        {
            "job_id": job_id,
            "production_id": production.id,
            "lot_number": production.lot_number,
            "total_records": total_records,
            "pending_records": len(offsets),
            "batch_size": batch_size,
            "total_batches": total_batches,
        },
    )

    inserted = 0
    for batch_number, chunk in enumerate(chunks, start=1):
        try:
            rows = _build_rows(production, qr_token, chunk, start_serial, base_url)
            inserted += _insert_chunk(rows)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            message = f"Batch {batch_number} of {total_batches} failed: {exc.__class__.__name__}"
            store.fail(job_id, message)
            _log_generation_error(
                {
                    "job_id": job_id,
                    "production_id": production.id,
                    "batch": batch_number,
                    "inserted": inserted,
                    "error_type": type(exc).__name__,
                }
            )
            raise GenerationError(message, status=500, job_id=job_id) from exc
        store.update(job_id, current_batch=batch_number, total_inserted=already_present + inserted)

    production.import_qr_at = datetime.utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        store.fail(job_id, "Unable to mark the production as generated.")
        raise GenerationError("Unable to mark the production as generated.", status=500, job_id=job_id) from exc

    store.complete(job_id, total_inserted=already_present + inserted)
    _log_generation_event(
        "register_generation_done",
        {
            "job_id": job_id,
            "production_id": production.id,
            "inserted": inserted,
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        },
    )
    return GenerationResult(
        job_id=job_id,
        production_id=production.id,
        generated=inserted,
        total_batches=total_batches,
    )


def _record_refusal(store: ProgressStore, exc: GenerationError, production: Optional[Production]) -> None:
    """Leave an ``error`` progress record for a refused request.

    A running job that already owns ``job_id`` keeps its record.
    """

    try:
        if not store.get(exc.job_id).terminal:
            return
    except ProgressNotFound:
        pass
    store.start(
        exc.job_id,
        0,
        0,
        lot_number=production.lot_number if production is not None else None,
        production_id=production.id if production is not None else None,
    )
    store.fail(exc.job_id, exc.message)


def start_generation(
    production_id: int,
    qr_token: Any,
    *,
    job_id: Optional[str] = None,
    resume: bool = False,
) -> GenerationResult:
    """Guarded entry point: refuses generated lots and unresumed partial lots.

    A refused request still leaves an ``error`` progress record under
    ``job_id``. Failures after the first chunk are recorded by
    :func:`generate_registers` itself.
    """

    job_id = job_id or new_job_id()
    store = get_progress_store()
    production = None
    try:
        production = db.session.get(Production, production_id)
        if production is None:
            raise GenerationError("Production not found.", status=404, job_id=job_id)

        token = str(qr_token or "").strip()
        if not token:
            raise GenerationError("qr_token is required.", job_id=job_id)

        if production.import_qr_at is not None:
            raise GenerationError(
                f"Registers for lot {production.lot_number} were already generated.",
                status=409,
                job_id=job_id,
            )

        existing_count = (
            db.session.query(func.count(ProductionRegister.id))
            .filter(ProductionRegister.production_id == production.id)
            .scalar()
            or 0
        )
        if existing_count and not resume:
            raise GenerationError(
                f"Lot {production.lot_number} has {existing_count} registers from an unfinished run. "
                "Resume the generation to complete it.",
                status=409,
                job_id=job_id,
            )

        return generate_registers(
            production,
            token,
            job_id=job_id,
            store=store,
            skip_existing=bool(existing_count),
        )
    except GenerationError as exc:
        if exc.status < 500:
            _record_refusal(store, exc, production)
        raise


def bulk_generate(entries: list[dict[str, Any]]) -> dict[str, Any]:
    """Generate registers for several productions one after another."""

    results: list[dict[str, Any]] = []
    total_generated = 0
    success_count = 0

    for entry in entries:
        production_id = entry.get("production_id")
        job_id = entry.get("job_id") or new_job_id()
        try:
            production_key = int(production_id)
        except (TypeError, ValueError):
            refusal = GenerationError("production_id must be an integer.", job_id=job_id)
            _record_refusal(get_progress_store(), refusal, None)
            results.append(
                {
                    "production_id": production_id,
                    "generated": 0,
                    "success": False,
                    "error": refusal.message,
                    "job_id": job_id,
                }
            )
            continue

        try:
            result = start_generation(
                production_key,
                entry.get("qr_token"),
                job_id=job_id,
                resume=bool(entry.get("resume")),
            )
        except GenerationError as exc:
            results.append(
                {
                    "production_id": production_id,
                    "generated": 0,
                    "success": False,
                    "error": exc.message,
                    "job_id": exc.job_id,
                }
            )
            continue

        success_count += 1
        total_generated += result.generated
        results.append(
            {
                "production_id": result.production_id,
                "generated": result.generated,
                "success": True,
                "error": None,
                "job_id": result.job_id,
            }
        )

    failure_count = len(results) - success_count
    summary = {
        "success": success_count > 0,
        "results": results,
        "total_generated": total_generated,
        "success_count": success_count,
        "failure_count": failure_count,
        "summary": (
            f"Generated {total_generated} registers for {success_count} production(s). "
            f"{failure_count} failed."
        ),
    }
    _log_generation_event(
        "register_bulk_generation_done",
        {
            "entries": len(entries),
            "success_count": success_count,
            "failure_count": failure_count,
            "total_generated": total_generated,
        },
    )
    return summary


__all__ = [
    "GenerationError",
    "GenerationResult",
    "batch_size_for",
    "build_qr_link",
    "bulk_generate",
    "generate_registers",
    "new_job_id",
    "start_generation",
]
