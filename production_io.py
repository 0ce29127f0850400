"""Spreadsheet import/export for production records."""
from __future__ import annotations

import csv
import io
import os
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from flask import current_app
from marshmallow import ValidationError
from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Company, Production, Product, SeedClass, Variety
from register_codes import RegisterCodeError, compute_register_range
from schemas import CODE_CHARACTER

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PREVIEW_ROWS = 5
MAX_IMPORT_ERRORS = 50
EXPORT_COLUMNS = 65
EXPORT_FIRST_DATA_ROW = 8

REQUIRED_IMPORT_FIELDS = ("product_id", "group_number", "company_id", "lot_number")

TEMPLATE_COLUMNS = [
    "product_id",
    "product_name",
    "group_number",
    "code_1",
    "code_2",
    "code_3",
    "code_4",
    "clearance_number",
    "company_id",
    "company_name",
    "target_certification_wide",
    "target_seed_class_id",
    "target_seed_class_name",
    "target_seed_production",
    "seed_source_company_id",
    "seed_source_company_name",
    "seed_source_male_variety_id",
    "seed_source_male_variety_name",
    "seed_source_female_variety_id",
    "seed_source_female_variety_name",
    "seed_source_seed_class_id",
    "seed_source_seed_class_name",
    "seed_source_serial_number",
    "seed_source_male_lot_number",
    "seed_source_female_lot_number",
    "cert_realization_wide",
    "cert_realization_seed_production",
    "cert_realization_harvest_date",
    "lot_number",
    "lot_seed_class_id",
    "lot_seed_class_name",
    "lot_variety_id",
    "lot_variety_name",
    "lot_volume",
    "lot_content",
    "lot_total",
    "lab_result_certification_number",
    "lab_result_test_result",
    "lab_result_incoming_date",
    "lab_result_filing_date",
    "lab_result_testing_date",
    "lab_result_tested_date",
    "lab_result_serial_number",
    "lab_result_expired_date",
    "test_param_moisture",
    "test_param_pure_seed",
    "test_param_other_variety",
    "test_param_other_crop_seed",
    "test_param_inert_matter",
    "test_param_germination",
]

TEMPLATE_SAMPLE_ROW = [
    "1", "Jagung Hibrida", "A-001", "A", "B", "C", "D", "CLR-001",
    "1", "PT Benih Nusantara", "10.5", "1", "ES", "1000",
    "1", "PT Benih Nusantara", "1", "Varietas Jantan A", "2", "Varietas Betina B",
    "1", "ES", "SN-001", "LOT-M-001", "LOT-F-001",
    "10.2", "980", "2024-12-15",
    "LOT-001", "1", "ES", "1", "Varietas Hibrida", "950", "50", "1000",
    "CERT-001", "95.5", "2024-11-01", "2024-11-05", "2024-11-10", "2024-11-15", "1000001", "2025-11-15",
    "12.5", "98.0", "0.5", "0.3", "1.2", "85.0",
]

_FLOAT_FIELDS = (
    "target_certification_wide",
    "target_seed_production",
    "cert_realization_wide",
    "lab_result_test_result",
)
_ZERO_FLOAT_FIELDS = (
    "lot_volume",
    "lot_content",
    "test_param_moisture",
    "test_param_pure_seed",
    "test_param_other_variety",
    "test_param_other_crop_seed",
    "test_param_inert_matter",
    "test_param_germination",
)
_SEED_CLASS_FIELDS = ("target_seed_class_id", "seed_source_seed_class_id", "lot_seed_class_id")
_VARIETY_FIELDS = ("seed_source_male_variety_id", "seed_source_female_variety_id", "lot_variety_id")
_CODE_DEFAULTS = {"code_1": "A", "code_2": "B", "code_3": "C", "code_4": "D"}
_TEXT_DEFAULTS = {
    "seed_source_male_lot_number": "LOT-M-001",
    "seed_source_female_lot_number": "LOT-F-001",
    "lab_result_certification_number": "CERT-001",
}
_OPTIONAL_TEXT_FIELDS = (
    "clearance_number",
    "seed_source_serial_number",
    "cert_realization_seed_production",
    "lab_result_serial_number",
)

EXPORT_NOTE_ROW = [
    "CATATAN",
    "",
    "MOHON JANGAN MENGUBAH SUSUNAN KOLOM PADA TEMPLATE EXCEL DIBAWAH INI AGAR PROSES UPLOAD BERJALAN DENGAN LANCAR",
]

EXPORT_HEADER_ROWS = [
    [
        "NO", "PROVINSI", "JENIS BENIH", "PRODUSEN", "", "", "", "", "", "", "",
        "PROSES SERTIFIKASI", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "",
        "PERMOHONAN SERTIFIKASI", "", "", "", "", "", "", "",
        "REALISASI SERTIFIKASI (FORM 3)", "", "",
        "PROSES SERTIFIKASI", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "",
        "UPLOAD DOKUMEN", "", "", "",
    ],
    [
        "", "", "", "NAMA", "ALAMAT", "STATUS", "", "", "", "", "",
        "PERMOHONAN (FORM 1)", "", "", "PENDAHULUAN (FORM 5)", "", "", "PEMERIKSAAN TANAMAN  (FORM 3)", "", "",
        "", "", "", "", "", "", "PEMERIKSAAN PASCA PANEN (FORM 4)", "", "",
        "", "", "", "ASAL BENIH SUMBER", "", "", "", "", "", "", "",
        "LOT", "", "", "", "", "", "HASIL PEMERIKSAAN LABORATORIUM", "", "", "", "", "", "",
        "PARAMETER UJI (%)", "", "", "", "", "", "", "", "", "",
    ],
    [
        "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "", "",
        "I", "", "", "II", "", "", "III", "", "", "", "", "", "", "", "", "", "", "", "", "", "",
    ],
    [
        "", "", "", "", "", "BUMN", "SWASTA", "PERORANGAN/KELOMPOK TANI", "DINAS", "ST. PROVINSI", "LITBANGDA",
        "NOMOR", "DOKUMEN", "", "NOMOR", "DOKUMEN", "", "NOMOR", "DOKUMEN", "",
        "NOMOR", "DOKUMEN", "", "NOMOR", "DOKUMEN", "", "NOMOR", "DOKUMEN", "",
        "TARGET", "", "", "ASAL BENIH SUMBER", "", "", "", "", "", "", "",
        "NOMOR", "KELAS BENIH", "VARIETAS", "VOLUME (KG)", "ISI KEMASAN (KG)", "JUMLAH",
        "NOMOR INDUK SERTIFIKASI", "TANGGAL AJU TAHUN-BULAN-HARI", "TANGGAL UJI TAHUN-BULAN-HARI",
        "TANGGAL SELESAI UJI TAHUN-BULAN-HARI", "HASIL UJI (KG)", "TGL BERAKHIR LABEL TAHUN-BULAN-HARI",
        "NOMOR SERI LABEL",
        "KADAR AIR", "BENIH MURNI", "CAMPURAN VARIETAS LAIN (CVL) LAPANG", "BENIH TANAMAN LAIN/BIJI GULMA",
        "KOTORAN BENIH", "DAYA BERKECAMBAH",
        "PERMOHONAN (FORM 1)", "PEMERIKSAAN PERTANAMAN (FORM 3)", "UJI LAB (FORM 5)", "SERTIFIKASI (FORM 6)",
    ],
    [
        "", "", "", "", "", "", "", "", "", "", "", "", "LULUS", "TIDAK LULUS", "", "MEMENUHI SYARAT",
        "TIDAK MEMENUHI SYARAT",
        "", "LULUS", "TIDAK LULUS", "", "LULUS", "TIDAK LULUS", "", "LULUS", "TIDAK LULUS", "", "LULUS", "TIDAK LULUS",
        "LUAS SERTIFIKASI (HA)", "KELAS BENIH", "PRODUKSI BENIH (KG)", "PRODUSEN BENIH", "VARIETAS",
        "NOMOR SERI LABEL", "KELAS BENIH", "NOMOR LOT", "LUAS SERTIFIKASI (HA)", "PRODUKSI CALON BENIH (KG)",
        "TGL PANEN",
    ],
]


class ImportFileError(RuntimeError):
    """Raised when an uploaded spreadsheet cannot be read."""


def _normalize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip().strip('"').strip()


def _file_extension(file_storage) -> str:
    return os.path.splitext(file_storage.filename or "")[1].lower()


def _read_csv_rows(file_storage) -> list[list[str]]:
    try:
        content = file_storage.stream.read().decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFileError("Unable to read CSV file; please ensure it is UTF-8 encoded") from exc
    reader = csv.reader(io.StringIO(content))
    return [[_normalize_value(cell) for cell in row] for row in reader]


def _read_xlsx_rows(file_storage) -> list[list[str]]:
    try:
        workbook = load_workbook(file_storage.stream, read_only=True, data_only=True)
    except Exception as exc:  # openpyxl raises several unrelated types for bad files
        raise ImportFileError("Unable to read the uploaded Excel file.") from exc
    try:
        sheet = workbook.active
        return [[_normalize_value(cell) for cell in row] for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def read_table(file_storage) -> tuple[list[str], list[dict[str, str]]]:
    """Return the header row and the non-empty data rows of a CSV or XLSX upload."""

    if not file_storage or not file_storage.filename:
        raise ImportFileError("File is required.")

    extension = _file_extension(file_storage)
    if extension == ".csv":
        raw_rows = _read_csv_rows(file_storage)
    elif extension in {".xlsx", ".xlsm"}:
        raw_rows = _read_xlsx_rows(file_storage)
    else:
        raise ImportFileError("Unsupported file format. Upload a .csv or .xlsx file.")

    raw_rows = [row for row in raw_rows if any(cell for cell in row)]
    if len(raw_rows) < 2:
        raise ImportFileError("File is empty or has no data rows.")

    headers = [cell.strip().lower() for cell in raw_rows[0]]
    rows: list[dict[str, str]] = []
    for raw in raw_rows[1:]:
        rows.append({header: (raw[idx] if idx < len(raw) else "") for idx, header in enumerate(headers) if header})
    return headers, rows


def preview_table(file_storage, limit: int = PREVIEW_ROWS) -> dict[str, Any]:
    headers, rows = read_table(file_storage)
    return {"headers": headers, "preview": rows[:limit], "total_rows": len(rows)}


def read_qr_token(file_storage) -> str:
    """Read the QR token from the second cell of the first data row."""

    rows = _read_csv_rows(file_storage)
    if len(rows) < 2 or len(rows[1]) < 2:
        raise ImportFileError("Token file must have a data row with at least two columns.")
    token = rows[1][1].replace('"', "").strip()
    if not token:
        raise ImportFileError("Token cell is empty.")
    return token


def lot_number_from_filename(filename: str) -> str:
    return os.path.splitext(os.path.basename(filename or ""))[0].strip()


def _parse_float(value: str, default: Optional[float]) -> Optional[float]:
    if not value:
        return default
    try:
        return float(value.replace(",", "."))
    except ValueError:
        return default


def _parse_int(value: str) -> Optional[int]:
    if not value:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def _parse_date(value: str, default: Optional[date] = None) -> Optional[date]:
    if not value:
        return default
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return default


def _row_codes(row: dict[str, str]) -> dict[str, str]:
    return {field: (row.get(field) or default).strip().upper() for field, default in _CODE_DEFAULTS.items()}


def _row_register_error(row: dict[str, str]) -> Optional[str]:
    """Apply the same code and serial checks as the production form."""

    codes = _row_codes(row)
    for field, value in codes.items():
        try:
            CODE_CHARACTER(value)
        except ValidationError:
            return f"{field} must be a single letter or digit"

    serial = (row.get("lab_result_serial_number") or "").strip()
    if serial and not serial.isdigit():
        return "lab_result_serial_number must contain digits only"

    try:
        compute_register_range(
            codes["code_1"],
            codes["code_2"],
            codes["code_3"],
            codes["code_4"],
            _parse_int(row.get("lot_total", "")) or 0,
            serial,
        )
    except RegisterCodeError as exc:
        return str(exc)
    return None


def _production_from_row(row: dict[str, str], company_ids: set[int]) -> Production:
    today = date.today()
    values: dict[str, Any] = {
        "product_id": int(row["product_id"]),
        "company_id": int(row["company_id"]),
        "group_number": row["group_number"],
        "lot_number": row["lot_number"],
        **_row_codes(row),
    }
    for field, default in _TEXT_DEFAULTS.items():
        values[field] = row.get(field) or default
    for field in _OPTIONAL_TEXT_FIELDS:
        values[field] = row.get(field) or None
    for field in _FLOAT_FIELDS:
        values[field] = _parse_float(row.get(field, ""), None)
    for field in _ZERO_FLOAT_FIELDS:
        values[field] = _parse_float(row.get(field, ""), 0.0)
    values["lot_total"] = _parse_int(row.get("lot_total", "")) or 0

    seed_source_company = _parse_int(row.get("seed_source_company_id", ""))
    values["seed_source_company_id"] = seed_source_company if seed_source_company in company_ids else values["company_id"]

    values["cert_realization_harvest_date"] = _parse_date(row.get("cert_realization_harvest_date", ""))
    values["lab_result_incoming_date"] = _parse_date(row.get("lab_result_incoming_date", ""))
    for field in ("lab_result_filing_date", "lab_result_testing_date", "lab_result_tested_date"):
        values[field] = _parse_date(row.get(field, ""), today)
    values["lab_result_expired_date"] = _parse_date(
        row.get("lab_result_expired_date", ""), today + timedelta(days=365)
    )
    return Production(**values)


def import_productions(rows: Iterable[dict[str, str]]) -> dict[str, Any]:
    """Insert production rows, skipping invalid or duplicate ones."""

    rows = list(rows)
    product_ids = {product_id for (product_id,) in db.session.query(Product.id)}
    company_ids = {company_id for (company_id,) in db.session.query(Company.id)}
    seed_class_ids = {seed_class_id for (seed_class_id,) in db.session.query(SeedClass.id)}
    variety_ids = {variety_id for (variety_id,) in db.session.query(Variety.id)}
    existing_keys = {
        (group_number, lot_number)
        for group_number, lot_number in db.session.query(Production.group_number, Production.lot_number)
    }

    errors: list[str] = []
    created: list[Production] = []
    skipped = 0

    for index, row in enumerate(rows):
        row_number = index + 2
        missing = [field for field in REQUIRED_IMPORT_FIELDS if not row.get(field)]
        if missing:
            errors.append(f"Row {row_number}: missing required fields: {', '.join(missing)}")
            skipped += 1
            continue

        product_id = _parse_int(row["product_id"])
        if product_id not in product_ids:
            errors.append(f"Row {row_number}: product {row['product_id']} not found")
            skipped += 1
            continue

        company_id = _parse_int(row["company_id"])
        if company_id not in company_ids:
            errors.append(f"Row {row_number}: company {row['company_id']} not found")
            skipped += 1
            continue

        key = (row["group_number"], row["lot_number"])
        if key in existing_keys:
            errors.append(
                f"Row {row_number}: production with group_number {key[0]} and lot_number {key[1]} already exists"
            )
            skipped += 1
            continue

        register_error = _row_register_error(row)
        if register_error:
            errors.append(f"Row {row_number}: {register_error}")
            skipped += 1
            continue

        normalized = {**row, "product_id": str(product_id), "company_id": str(company_id)}
        production = _production_from_row(normalized, company_ids)
        for field in _SEED_CLASS_FIELDS:
            value = _parse_int(row.get(field, ""))
            setattr(production, field, value if value in seed_class_ids else None)
        for field in _VARIETY_FIELDS:
            value = _parse_int(row.get(field, ""))
            setattr(production, field, value if value in variety_ids else None)

        existing_keys.add(key)
        created.append(production)

    if created:
        try:
            db.session.add_all(created)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    current_app.logger.info(
        {
            "event": "production_import_done",
            "imported": len(created),
            "skipped": skipped,
            "total_processed": len(rows),
        }
    )
    return {
        "success": bool(created),
        "imported": len(created),
        "skipped": skipped,
        "errors": errors[:MAX_IMPORT_ERRORS],
        "total_processed": len(rows),
    }


def _workbook_bytes(workbook: Workbook) -> io.BytesIO:
    output = io.BytesIO()
    workbook.save(output)
    output.seek(0)
    return output


def build_template_workbook() -> io.BytesIO:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Productions"
    sheet.append(TEMPLATE_COLUMNS)
    sheet.append(TEMPLATE_SAMPLE_ROW)
    return _workbook_bytes(workbook)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return value


def _name(related) -> str:
    return related.name if related is not None and related.name else ""


def _pair(first: Optional[str], second: Optional[str]) -> str:
    return f"{first or ''};{second or ''}".strip()


def export_row(production: Production, index: int) -> list[Any]:
    """Map a production onto the 65 columns of the certification template."""

    config = current_app.config
    row: list[Any] = [""] * EXPORT_COLUMNS
    company = production.company
    province = company.province.name if company is not None and company.province is not None else ""

    row[0] = index + 1
    row[1] = province or config.get("EXPORT_DEFAULT_PROVINCE", "")
    row[2] = config.get("EXPORT_DEFAULT_SEED_TYPE", "")
    row[3] = _name(company)
    row[4] = (company.address or "") if company is not None else ""
    row[6] = "v"

    row[29] = _cell(production.target_certification_wide)
    row[30] = _name(production.target_seed_class)
    row[31] = _cell(production.target_seed_production)

    row[32] = _name(production.seed_source_company)
    row[33] = _pair(_name(production.seed_source_male_variety), _name(production.seed_source_female_variety))
    row[34] = "-"
    row[35] = _name(production.seed_source_seed_class)
    row[36] = _pair(production.seed_source_male_lot_number, production.seed_source_female_lot_number)

    row[37] = _cell(production.cert_realization_wide)
    row[38] = _cell(production.cert_realization_seed_production)
    row[39] = _cell(production.cert_realization_harvest_date)

    row[40] = _cell(production.lot_number)
    row[41] = _name(production.lot_seed_class)
    row[42] = _name(production.lot_variety)
    row[43] = _cell(production.lot_volume)
    row[44] = _cell(production.lot_content)
    row[45] = _cell(production.lot_total)

    row[46] = _cell(production.lab_result_certification_number)
    row[47] = _cell(production.lab_result_filing_date)
    row[48] = _cell(production.lab_result_testing_date)
    row[49] = _cell(production.lab_result_tested_date)
    row[50] = _cell(production.lab_result_test_result)
    row[51] = _cell(production.lab_result_expired_date)
    row[52] = _cell(production.lab_result_serial_number)

    row[53] = _cell(production.test_param_moisture)
    row[54] = _cell(production.test_param_pure_seed)
    row[55] = _cell(production.test_param_other_variety)
    row[56] = _cell(production.test_param_other_crop_seed)
    row[57] = _cell(production.test_param_inert_matter)
    row[58] = _cell(production.test_param_germination)

    row[59] = "UPLOADED" if production.docs_application_form else ""
    row[60] = "UPLOADED" if production.docs_field_inspection else ""
    row[61] = "UPLOADED" if production.docs_lab_test else ""
    row[62] = "UPLOADED" if production.docs_certification else ""
    return row


def _padded(values: list[Any]) -> list[Any]:
    return (list(values) + [""] * EXPORT_COLUMNS)[:EXPORT_COLUMNS]


def build_export_workbook(productions: list[Production]) -> io.BytesIO:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Data Produksi"

    sheet.append(EXPORT_NOTE_ROW)
    sheet.append([""])
    for header_row in EXPORT_HEADER_ROWS:
        sheet.append(_padded(header_row))
    for index, production in enumerate(productions):
        sheet.append(export_row(production, index))

    widths = {1: 5, 2: 15, 3: 20, 4: 25, 5: 30}
    for column in range(1, EXPORT_COLUMNS + 1):
        sheet.column_dimensions[get_column_letter(column)].width = widths.get(column, 8 if column <= 11 else 12)

    return _workbook_bytes(workbook)


__all__ = [
    "EXPORT_COLUMNS",
    "EXPORT_FIRST_DATA_ROW",
    "ImportFileError",
    "TEMPLATE_COLUMNS",
    "XLSX_MIMETYPE",
    "build_export_workbook",
    "build_template_workbook",
    "export_row",
    "import_productions",
    "lot_number_from_filename",
    "preview_table",
    "read_qr_token",
    "read_table",
]
