from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validates, validates_schema
from marshmallow.validate import Length, OneOf, Range, Regexp

from models import DEPARTMENTS, ComplaintStatus, PERMISSION_LABELS

CODE_CHARACTER = Regexp(r"^[0-9A-Za-z]$", error="Code must be a single letter or digit.")


def _blank_to_none(data, keys):
    """Treat empty strings from HTML forms as missing values."""

    if not isinstance(data, dict):
        return data
    normalized = dict(data)
    for key in keys:
        value = normalized.get(key)
        if isinstance(value, str) and not value.strip():
            normalized[key] = None
    return normalized


class UserSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    email = fields.Str()
    active = fields.Bool()
    department = fields.Str(allow_none=True)
    role = fields.Function(lambda user: user.role.name if user.role else None)
    role_id = fields.Int(allow_none=True)
    complaint_permissions = fields.Dict()


class UserCreateSchema(Schema):
    name = fields.Str(required=True, validate=Length(min=1, max=120))
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=Length(min=6), load_only=True)
    role_id = fields.Int(allow_none=True, load_default=None)
    department = fields.Str(allow_none=True, load_default=None, validate=OneOf(DEPARTMENTS))
    complaint_permissions = fields.Dict(keys=fields.Str(), values=fields.Bool(), load_default=dict)


class PermissionSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    label = fields.Str(allow_none=True)


class RoleSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=80))
    description = fields.Str(allow_none=True)
    permissions = fields.List(fields.Str(), load_default=list)

    @pre_load
    def strip_name(self, data, **_kwargs):
        if isinstance(data, dict) and isinstance(data.get("name"), str):
            data = {**data, "name": data["name"].strip()}
        return data

    @validates("permissions")
    def validate_permissions(self, value, **_kwargs):
        unknown = sorted(set(value) - set(PERMISSION_LABELS))
        if unknown:
            raise ValidationError(f"Unknown permissions: {', '.join(unknown)}")


def dump_role(role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "permissions": sorted(role.permission_names),
        "user_count": len(role.users),
    }


class ProvinceSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=120))
    code = fields.Str(allow_none=True)


class CompanySchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=255))
    address = fields.Str(allow_none=True)
    province_id = fields.Int(allow_none=True)
    province = fields.Function(lambda company: company.province.name if company.province else None, dump_only=True)


class SeedClassSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=120))
    code = fields.Str(allow_none=True)


class VarietySchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=120))
    description = fields.Str(allow_none=True)


class ProductSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=255))
    sku = fields.Str(allow_none=True)
    category = fields.Str(allow_none=True)
    plant_type = fields.Str(allow_none=True)
    photo_path = fields.Str(allow_none=True)
    seed_class_id = fields.Int(allow_none=True)
    variety_id = fields.Int(allow_none=True)
    active_ingredients = fields.List(fields.Str(), load_default=list)


PRODUCTION_DATE_FIELDS = (
    "cert_realization_harvest_date",
    "lab_result_incoming_date",
    "lab_result_filing_date",
    "lab_result_testing_date",
    "lab_result_tested_date",
    "lab_result_expired_date",
)

PRODUCTION_NUMBER_FIELDS = (
    "target_certification_wide",
    "target_seed_production",
    "cert_realization_wide",
    "lot_volume",
    "lot_content",
    "lab_result_test_result",
    "test_param_moisture",
    "test_param_pure_seed",
    "test_param_other_variety",
    "test_param_other_crop_seed",
    "test_param_inert_matter",
    "test_param_germination",
)

PRODUCTION_REFERENCE_FIELDS = (
    "target_seed_class_id",
    "seed_source_company_id",
    "seed_source_male_variety_id",
    "seed_source_female_variety_id",
    "seed_source_seed_class_id",
    "lot_seed_class_id",
    "lot_variety_id",
)

PRODUCTION_TEXT_FIELDS = (
    "clearance_number",
    "seed_source_serial_number",
    "seed_source_male_lot_number",
    "seed_source_female_lot_number",
    "cert_realization_seed_production",
    "lab_result_certification_number",
    "lab_result_serial_number",
    "docs_application_form",
    "docs_field_inspection",
    "docs_lab_test",
    "docs_certification",
)

# Fields frozen once registers have been generated.
REGISTER_LOCKED_FIELDS = ("code_1", "code_2", "code_3", "code_4", "lot_total", "lab_result_serial_number")


class ProductionInputSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    product_id = fields.Int(required=True)
    company_id = fields.Int(required=True)
    group_number = fields.Str(required=True, validate=Length(min=1, max=80))
    lot_number = fields.Str(required=True, validate=Length(min=1, max=120))
    code_1 = fields.Str(required=True, validate=CODE_CHARACTER)
    code_2 = fields.Str(required=True, validate=CODE_CHARACTER)
    code_3 = fields.Str(required=True, validate=CODE_CHARACTER)
    code_4 = fields.Str(required=True, validate=CODE_CHARACTER)
    lot_total = fields.Int(required=True, validate=Range(min=0))

    target_certification_wide = fields.Float(allow_none=True)
    target_seed_production = fields.Float(allow_none=True)
    cert_realization_wide = fields.Float(allow_none=True)
    lot_volume = fields.Float(allow_none=True)
    lot_content = fields.Float(allow_none=True)
    lab_result_test_result = fields.Float(allow_none=True)
    test_param_moisture = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    test_param_pure_seed = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    test_param_other_variety = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    test_param_other_crop_seed = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    test_param_inert_matter = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    test_param_germination = fields.Float(allow_none=True, validate=Range(min=0, max=100))

    target_seed_class_id = fields.Int(allow_none=True)
    seed_source_company_id = fields.Int(allow_none=True)
    seed_source_male_variety_id = fields.Int(allow_none=True)
    seed_source_female_variety_id = fields.Int(allow_none=True)
    seed_source_seed_class_id = fields.Int(allow_none=True)
    lot_seed_class_id = fields.Int(allow_none=True)
    lot_variety_id = fields.Int(allow_none=True)

    clearance_number = fields.Str(allow_none=True)
    seed_source_serial_number = fields.Str(allow_none=True)
    seed_source_male_lot_number = fields.Str(allow_none=True)
    seed_source_female_lot_number = fields.Str(allow_none=True)
    cert_realization_seed_production = fields.Str(allow_none=True)
    lab_result_certification_number = fields.Str(allow_none=True)
    lab_result_serial_number = fields.Str(allow_none=True)
    docs_application_form = fields.Str(allow_none=True)
    docs_field_inspection = fields.Str(allow_none=True)
    docs_lab_test = fields.Str(allow_none=True)
    docs_certification = fields.Str(allow_none=True)

    cert_realization_harvest_date = fields.Date(allow_none=True)
    lab_result_incoming_date = fields.Date(allow_none=True)
    lab_result_filing_date = fields.Date(allow_none=True)
    lab_result_testing_date = fields.Date(allow_none=True)
    lab_result_tested_date = fields.Date(allow_none=True)
    lab_result_expired_date = fields.Date(allow_none=True)

    @pre_load
    def normalize_payload(self, data, **_kwargs):
        data = _blank_to_none(
            data,
            PRODUCTION_DATE_FIELDS + PRODUCTION_NUMBER_FIELDS + PRODUCTION_REFERENCE_FIELDS + PRODUCTION_TEXT_FIELDS,
        )
        if not isinstance(data, dict):
            return data
        for key in ("group_number", "lot_number", "lab_result_serial_number"):
            if isinstance(data.get(key), str):
                data[key] = data[key].strip()
        for key in ("code_1", "code_2", "code_3", "code_4"):
            if isinstance(data.get(key), str):
                data[key] = data[key].strip().upper()
        return data

    @validates_schema
    def validate_serial(self, data, **_kwargs):
        serial = data.get("lab_result_serial_number")
        if serial and not serial.isdigit():
            raise ValidationError(
                "Serial number must contain digits only.",
                field_name="lab_result_serial_number",
            )


class ProductionSchema(Schema):
    id = fields.Int()
    product_id = fields.Int()
    product_name = fields.Function(lambda p: p.product.name if p.product else None)
    company_id = fields.Int()
    company_name = fields.Function(lambda p: p.company.name if p.company else None)
    group_number = fields.Str()
    lot_number = fields.Str()
    code_1 = fields.Str()
    code_2 = fields.Str()
    code_3 = fields.Str()
    code_4 = fields.Str()
    lot_total = fields.Int()
    clearance_number = fields.Str(allow_none=True)

    target_certification_wide = fields.Float(allow_none=True)
    target_seed_class_id = fields.Int(allow_none=True)
    target_seed_production = fields.Float(allow_none=True)
    seed_source_company_id = fields.Int(allow_none=True)
    seed_source_male_variety_id = fields.Int(allow_none=True)
    seed_source_female_variety_id = fields.Int(allow_none=True)
    seed_source_seed_class_id = fields.Int(allow_none=True)
    seed_source_serial_number = fields.Str(allow_none=True)
    seed_source_male_lot_number = fields.Str(allow_none=True)
    seed_source_female_lot_number = fields.Str(allow_none=True)
    cert_realization_wide = fields.Float(allow_none=True)
    cert_realization_seed_production = fields.Str(allow_none=True)
    cert_realization_harvest_date = fields.Date(allow_none=True)
    lot_seed_class_id = fields.Int(allow_none=True)
    lot_variety_id = fields.Int(allow_none=True)
    lot_volume = fields.Float(allow_none=True)
    lot_content = fields.Float(allow_none=True)

    lab_result_certification_number = fields.Str(allow_none=True)
    lab_result_test_result = fields.Float(allow_none=True)
    lab_result_incoming_date = fields.Date(allow_none=True)
    lab_result_filing_date = fields.Date(allow_none=True)
    lab_result_testing_date = fields.Date(allow_none=True)
    lab_result_tested_date = fields.Date(allow_none=True)
    lab_result_serial_number = fields.Str(allow_none=True)
    lab_result_expired_date = fields.Date(allow_none=True)

    test_param_moisture = fields.Float(allow_none=True)
    test_param_pure_seed = fields.Float(allow_none=True)
    test_param_other_variety = fields.Float(allow_none=True)
    test_param_other_crop_seed = fields.Float(allow_none=True)
    test_param_inert_matter = fields.Float(allow_none=True)
    test_param_germination = fields.Float(allow_none=True)

    docs_application_form = fields.Str(allow_none=True)
    docs_field_inspection = fields.Str(allow_none=True)
    docs_lab_test = fields.Str(allow_none=True)
    docs_certification = fields.Str(allow_none=True)

    import_qr_at = fields.DateTime(allow_none=True)
    is_generated = fields.Bool()
    created_at = fields.DateTime()
    updated_at = fields.DateTime()


class ProductionRegisterSchema(Schema):
    id = fields.Int()
    production_id = fields.Int()
    serial_number = fields.Str()
    production_code = fields.Str()
    search_key = fields.Str()
    qr_code_link = fields.Str(allow_none=True)
    created_at = fields.DateTime()


class ComplaintCreateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    customer_name = fields.Str(required=True, validate=Length(min=1, max=200))
    customer_email = fields.Email(allow_none=True, load_default=None)
    customer_phone = fields.Str(allow_none=True, load_default=None)
    customer_province = fields.Str(required=True, validate=Length(min=1, max=120))
    customer_city = fields.Str(required=True, validate=Length(min=1, max=120))
    customer_address = fields.Str(required=True, validate=Length(min=1))
    complaint_type = fields.Str(load_default="other")
    subject = fields.Str(required=True, validate=Length(min=1, max=255))
    description = fields.Str(required=True, validate=Length(min=1))
    related_product_serial = fields.Str(allow_none=True, load_default=None)
    related_product_name = fields.Str(allow_none=True, load_default=None)

    @pre_load
    def normalize_payload(self, data, **_kwargs):
        data = _blank_to_none(data, ("customer_email", "customer_phone", "related_product_serial", "related_product_name"))
        if not isinstance(data, dict):
            return data
        for key in ("customer_name", "customer_province", "customer_city", "subject"):
            if isinstance(data.get(key), str):
                data[key] = data[key].strip()
        if isinstance(data.get("complaint_type"), str):
            data["complaint_type"] = data["complaint_type"].strip().lower() or "other"
        return data


class ComplaintResponseSchema(Schema):
    id = fields.Int()
    message = fields.Str()
    response_type = fields.Str()
    admin_id = fields.Int(allow_none=True)
    admin_name = fields.Str(allow_none=True)
    is_customer_response = fields.Bool()
    is_internal = fields.Bool()
    is_auto_response = fields.Bool()
    created_at = fields.DateTime()


class ComplaintHistorySchema(Schema):
    id = fields.Int()
    action = fields.Str()
    old_value = fields.Str(allow_none=True)
    new_value = fields.Str(allow_none=True)
    created_by = fields.Int(allow_none=True)
    notes = fields.Str(allow_none=True)
    created_at = fields.DateTime()


class ComplaintAssignmentSchema(Schema):
    id = fields.Int()
    assigned_to = fields.Int()
    assigned_by = fields.Int(allow_none=True)
    assignment_reason = fields.Str(allow_none=True)
    previous_assignee = fields.Int(allow_none=True)
    is_active = fields.Bool()
    assigned_at = fields.DateTime()
    unassigned_at = fields.DateTime(allow_none=True)


class ComplaintInvestigationSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Int(dump_only=True)
    complaint_id = fields.Int(dump_only=True)
    investigator_id = fields.Int(allow_none=True)
    investigator_name = fields.Str(allow_none=True)
    investigator_position = fields.Str(allow_none=True)
    investigation_date = fields.Date(allow_none=True)
    complaint_location = fields.Str(allow_none=True)
    farmer_name = fields.Str(allow_none=True)
    complaint_type = fields.Str(allow_none=True)
    seed_variety = fields.Str(allow_none=True)
    lot_number_check = fields.Str(allow_none=True)
    problematic_quantity_kg = fields.Float(allow_none=True, validate=Range(min=0))
    planting_date = fields.Date(allow_none=True)
    label_expired_date = fields.Date(allow_none=True)
    purchase_date = fields.Date(allow_none=True)
    purchase_place = fields.Str(allow_none=True)
    purchase_address = fields.Str(allow_none=True)
    cause_category = fields.Str(allow_none=True)
    findings = fields.Dict(load_default=dict)
    problem_description = fields.Str(allow_none=True)
    action_taken = fields.Str(allow_none=True)
    investigation_conclusion = fields.Str(allow_none=True)
    root_cause_determination = fields.Str(allow_none=True)
    long_term_corrective_action = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)

    @pre_load
    def normalize_payload(self, data, **_kwargs):
        return _blank_to_none(
            data,
            (
                "investigation_date",
                "planting_date",
                "label_expired_date",
                "purchase_date",
                "problematic_quantity_kg",
                "investigator_id",
            ),
        )


class ComplaintSchema(Schema):
    id = fields.Int()
    complaint_number = fields.Str()
    customer_name = fields.Str()
    customer_email = fields.Str(allow_none=True)
    customer_phone = fields.Str(allow_none=True)
    customer_province = fields.Str()
    customer_city = fields.Str()
    customer_address = fields.Str()
    complaint_type = fields.Str()
    subject = fields.Str()
    description = fields.Str()
    related_product_serial = fields.Str(allow_none=True)
    related_product_name = fields.Str(allow_none=True)
    status = fields.Function(lambda complaint: ComplaintStatus(complaint.status).value)
    department = fields.Str(allow_none=True)
    assigned_to = fields.Int(allow_none=True)
    assignee_name = fields.Function(lambda complaint: complaint.assignee.name if complaint.assignee else None)
    assigned_at = fields.DateTime(allow_none=True)
    acknowledged_replacement_qty = fields.Int(allow_none=True)
    acknowledged_replacement_hybrid = fields.Str(allow_none=True)
    resolution = fields.Str(allow_none=True)
    resolution_summary = fields.Str(allow_none=True)
    resolved_at = fields.DateTime(allow_none=True)
    resolved_by = fields.Int(allow_none=True)
    customer_satisfaction_rating = fields.Int(allow_none=True)
    customer_feedback = fields.Str(allow_none=True)
    feedback_submitted_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()


class ComplaintFeedbackSchema(Schema):
    rating = fields.Int(required=True, validate=Range(min=1, max=5))
    feedback = fields.Str(allow_none=True, load_default=None)
    quick_answers = fields.Dict(allow_none=True, load_default=None)


class ComplaintObservationSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Int(dump_only=True)
    complaint_id = fields.Int(dump_only=True)
    observer_id = fields.Int(allow_none=True)
    observer_name = fields.Str(allow_none=True)
    observer_position = fields.Str(allow_none=True)
    observation_date = fields.Date(allow_none=True)
    planting_date = fields.Date(allow_none=True)
    label_expired_date = fields.Date(allow_none=True)
    purchase_date = fields.Date(allow_none=True)
    purchase_place = fields.Str(allow_none=True)
    purchase_address = fields.Str(allow_none=True)
    is_germination_issue = fields.Bool(load_default=False)
    germination_below_85 = fields.Bool(load_default=False)
    seed_not_found = fields.Bool(load_default=False)
    seed_not_grow_soil = fields.Bool(load_default=False)
    seed_damaged_chemical = fields.Bool(load_default=False)
    seed_damaged_insect = fields.Bool(load_default=False)
    fungal_infection = fields.Bool(load_default=False)
    seed_excavated = fields.Bool(load_default=False)
    additional_seed_treatment = fields.Bool(load_default=False)
    seed_soaking = fields.Bool(load_default=False)
    planting_depth_over_7cm = fields.Bool(load_default=False)
    has_purchase_proof = fields.Bool(load_default=False)
    has_packaging_evidence = fields.Bool(load_default=False)
    replacement_qty = fields.Int(allow_none=True, validate=Range(min=0))
    replacement_hybrid = fields.Str(allow_none=True)
    observation_result = fields.Str(allow_none=True)
    general_notes = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)

    @pre_load
    def normalize_payload(self, data, **_kwargs):
        return _blank_to_none(
            data,
            (
                "observation_date",
                "planting_date",
                "label_expired_date",
                "purchase_date",
                "replacement_qty",
                "observer_id",
            ),
        )


class ComplaintLabTestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Int(dump_only=True)
    complaint_id = fields.Int(dump_only=True)
    technician_id = fields.Int(allow_none=True)
    lab_technician_name = fields.Str(allow_none=True)
    testing_method = fields.Str(allow_none=True)
    market_sample_received_date = fields.Date(allow_none=True)
    market_germination_result_date = fields.Date(allow_none=True)
    market_vigour_result_date = fields.Date(allow_none=True)
    market_germination_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    market_vigour_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    market_physical_purity_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    market_mc_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    market_genetic_purity_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    market_result = fields.Str(allow_none=True)
    guard_sample_received_date = fields.Date(allow_none=True)
    guard_germination_result_date = fields.Date(allow_none=True)
    guard_vigour_result_date = fields.Date(allow_none=True)
    guard_germination_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    guard_vigour_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    guard_physical_purity_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    guard_mc_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    guard_genetic_purity_percent = fields.Float(allow_none=True, validate=Range(min=0, max=100))
    guard_result = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)

    @pre_load
    def normalize_payload(self, data, **_kwargs):
        return _blank_to_none(
            data,
            [
                name
                for name in self.fields
                if name.endswith(("_date", "_percent")) or name == "technician_id"
            ],
        )


class ComplaintCategorySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Int(dump_only=True)
    code = fields.Str(
        required=True,
        validate=Regexp(r"^[a-z0-9_]{1,60}$", error="Use lowercase letters, digits and underscores."),
    )
    name = fields.Str(required=True, validate=Length(min=1, max=120))
    description = fields.Str(allow_none=True, load_default=None)
    auto_assign_department = fields.Str(allow_none=True, load_default=None, validate=OneOf(DEPARTMENTS))
    is_active = fields.Bool(load_default=True)
    sort_order = fields.Int(load_default=0)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)

    @pre_load
    def normalize_payload(self, data, **_kwargs):
        data = _blank_to_none(data, ("description", "auto_assign_department"))
        if not isinstance(data, dict):
            return data
        if isinstance(data.get("code"), str):
            data["code"] = data["code"].strip().lower()
        if isinstance(data.get("name"), str):
            data["name"] = data["name"].strip()
        return data
