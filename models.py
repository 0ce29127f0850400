from datetime import datetime
from enum import Enum

from sqlalchemy import Index, UniqueConstraint
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from register_codes import RegisterRange, compute_register_range


ADMIN_ROLE_NAME = "admin"

# Permission catalogue shown in the role editor, keyed by permission name.
PERMISSION_LABELS: dict[str, str] = {
    "catalog.view": "View master data",
    "catalog.manage": "Manage master data",
    "production.batch.view": "View production batches",
    "production.batch.manage": "Manage production batches",
    "production.register.view": "View production registers",
    "production.register.manage": "Manage production registers",
    "complaint.view": "View all complaints",
    "complaint.respond": "Respond to complaints",
    "complaint.assign": "Assign complaints to users or departments",
    "complaint.analytics": "View complaint analytics",
    "complaint.manage_users": "Manage the complaint team",
    "complaint.settings": "Manage complaint categories",
    "users.manage": "Manage users and roles",
}

# Per-user complaint flags stored on ``User.complaint_permissions``.
COMPLAINT_PERMISSION_FLAGS: dict[str, str] = {
    "can_view_complaints": "complaint.view",
    "can_respond_to_complaints": "complaint.respond",
    "can_assign_complaints": "complaint.assign",
    "can_view_complaint_analytics": "complaint.analytics",
    "can_manage_complaint_users": "complaint.manage_users",
}

DEPARTMENTS = (
    "admin",
    "customer_service",
    "quality_assurance",
    "technical",
    "management",
)


class ComplaintStatus(str, Enum):
    submitted = "submitted"
    acknowledged = "acknowledged"
    investigating = "investigating"
    pending_response = "pending_response"
    resolved = "resolved"
    closed = "closed"

    @property
    def is_final(self) -> bool:
        return self in {ComplaintStatus.resolved, ComplaintStatus.closed}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


role_has_permissions = db.Table(
    "role_has_permissions",
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    label = db.Column(db.String(255))

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<Permission {self.name}>"


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False, unique=True)
    description = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    permissions = db.relationship(
        "Permission",
        secondary=role_has_permissions,
        lazy="selectin",
        order_by="Permission.name",
    )

    @property
    def permission_names(self) -> set[str]:
        return {permission.name for permission in self.permissions}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    active = db.Column(db.Boolean, default=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True, index=True)
    department = db.Column(db.String(40))
    complaint_permissions = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    role = db.relationship("Role", backref="users")

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return check_password_hash(self.password_hash, pw)

    @property
    def is_admin(self) -> bool:
        return bool(self.role and self.role.name == ADMIN_ROLE_NAME)

    def permission_names(self) -> set[str]:
        """Return the role permissions plus those granted by complaint flags."""

        granted = set(self.role.permission_names) if self.role else set()
        flags = self.complaint_permissions or {}
        for flag, permission in COMPLAINT_PERMISSION_FLAGS.items():
            if flags.get(flag):
                granted.add(permission)
        return granted


class Province(db.Model):
    __tablename__ = "provinces"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(10))


class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text)
    province_id = db.Column(db.Integer, db.ForeignKey("provinces.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    province = db.relationship("Province")

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<Company {self.name}>"


class SeedClass(db.Model):
    __tablename__ = "seed_classes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(20))


class Variety(db.Model):
    __tablename__ = "varieties"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text)


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(80), unique=True)
    category = db.Column(db.String(40))
    plant_type = db.Column(db.String(120))
    photo_path = db.Column(db.String(500))
    seed_class_id = db.Column(db.Integer, db.ForeignKey("seed_classes.id"), nullable=True)
    variety_id = db.Column(db.Integer, db.ForeignKey("varieties.id"), nullable=True)
    active_ingredients = db.Column(db.JSON, nullable=False, default=list)

    seed_class = db.relationship("SeedClass")
    variety = db.relationship("Variety")


class Production(db.Model):
    __tablename__ = "productions"
    __table_args__ = (
        UniqueConstraint("group_number", "lot_number", name="uq_production_group_lot"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    group_number = db.Column(db.String(80), nullable=False)
    code_1 = db.Column(db.String(1), nullable=False)
    code_2 = db.Column(db.String(1), nullable=False)
    code_3 = db.Column(db.String(1), nullable=False)
    code_4 = db.Column(db.String(1), nullable=False)
    clearance_number = db.Column(db.String(120))
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    target_certification_wide = db.Column(db.Float)
    target_seed_class_id = db.Column(db.Integer, db.ForeignKey("seed_classes.id"))
    target_seed_production = db.Column(db.Float)

    seed_source_company_id = db.Column(db.Integer, db.ForeignKey("companies.id"))
    seed_source_male_variety_id = db.Column(db.Integer, db.ForeignKey("varieties.id"))
    seed_source_female_variety_id = db.Column(db.Integer, db.ForeignKey("varieties.id"))
    seed_source_seed_class_id = db.Column(db.Integer, db.ForeignKey("seed_classes.id"))
    seed_source_serial_number = db.Column(db.String(120))
    seed_source_male_lot_number = db.Column(db.String(120))
    seed_source_female_lot_number = db.Column(db.String(120))

    cert_realization_wide = db.Column(db.Float)
    cert_realization_seed_production = db.Column(db.String(120))
    cert_realization_harvest_date = db.Column(db.Date, index=True)

    lot_number = db.Column(db.String(120), nullable=False, index=True)
    lot_seed_class_id = db.Column(db.Integer, db.ForeignKey("seed_classes.id"))
    lot_variety_id = db.Column(db.Integer, db.ForeignKey("varieties.id"))
    lot_volume = db.Column(db.Float)
    lot_content = db.Column(db.Float)
    lot_total = db.Column(db.Integer, nullable=False, default=0)

    lab_result_certification_number = db.Column(db.String(120))
    lab_result_test_result = db.Column(db.Float)
    lab_result_incoming_date = db.Column(db.Date)
    lab_result_filing_date = db.Column(db.Date)
    lab_result_testing_date = db.Column(db.Date)
    lab_result_tested_date = db.Column(db.Date)
    lab_result_serial_number = db.Column(db.String(40))
    lab_result_expired_date = db.Column(db.Date)

    test_param_moisture = db.Column(db.Float)
    test_param_pure_seed = db.Column(db.Float)
    test_param_other_variety = db.Column(db.Float)
    test_param_other_crop_seed = db.Column(db.Float)
    test_param_inert_matter = db.Column(db.Float)
    test_param_germination = db.Column(db.Float)

    docs_application_form = db.Column(db.String(500))
    docs_field_inspection = db.Column(db.String(500))
    docs_lab_test = db.Column(db.String(500))
    docs_certification = db.Column(db.String(500))

    import_qr_at = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = db.relationship("Product")
    company = db.relationship("Company", foreign_keys=[company_id])
    target_seed_class = db.relationship("SeedClass", foreign_keys=[target_seed_class_id])
    seed_source_company = db.relationship("Company", foreign_keys=[seed_source_company_id])
    seed_source_male_variety = db.relationship("Variety", foreign_keys=[seed_source_male_variety_id])
    seed_source_female_variety = db.relationship("Variety", foreign_keys=[seed_source_female_variety_id])
    seed_source_seed_class = db.relationship("SeedClass", foreign_keys=[seed_source_seed_class_id])
    lot_seed_class = db.relationship("SeedClass", foreign_keys=[lot_seed_class_id])
    lot_variety = db.relationship("Variety", foreign_keys=[lot_variety_id])

    registers = db.relationship(
        "ProductionRegister",
        backref="production",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_generated(self) -> bool:
        return self.import_qr_at is not None

    def register_range(self) -> RegisterRange:
        """Derive the first/last code and serial for this lot."""

        return compute_register_range(
            self.code_1,
            self.code_2,
            self.code_3,
            self.code_4,
            self.lot_total,
            self.lab_result_serial_number,
        )


class ProductionRegister(db.Model):
    __tablename__ = "production_registers"
    # Not unique; callers guard against generating a lot twice.
    __table_args__ = (
        Index("ix_production_registers_production_serial", "production_id", "serial_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    production_id = db.Column(
        db.Integer,
        db.ForeignKey("productions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    serial_number = db.Column(db.String(40), nullable=False, index=True)
    production_code = db.Column(db.String(10), nullable=False)
    search_key = db.Column(db.String(60), nullable=False, index=True)
    qr_code_link = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ComplaintProfile(db.Model):
    __tablename__ = "user_complaint_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    full_name = db.Column(db.String(120), nullable=False)
    department = db.Column(db.String(40), nullable=False, default="customer_service")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    max_assigned_complaints = db.Column(db.Integer, nullable=False, default=10)
    current_assigned_count = db.Column(db.Integer, nullable=False, default=0)
    total_resolved = db.Column(db.Integer, nullable=False, default=0)
    avg_resolution_hours = db.Column(db.Float)

    user = db.relationship("User", backref=db.backref("complaint_profile", uselist=False))

    @property
    def has_capacity(self) -> bool:
        return (self.current_assigned_count or 0) < (self.max_assigned_complaints or 0)


class Complaint(db.Model):
    __tablename__ = "complaints"

    id = db.Column(db.Integer, primary_key=True)
    complaint_number = db.Column(db.String(40), nullable=False, unique=True)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(200))
    customer_phone = db.Column(db.String(40))
    customer_province = db.Column(db.String(120), nullable=False)
    customer_city = db.Column(db.String(120), nullable=False)
    customer_address = db.Column(db.Text, nullable=False)
    complaint_type = db.Column(db.String(60), nullable=False, default="other")
    subject = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    related_product_serial = db.Column(db.String(60))
    related_product_name = db.Column(db.String(255))
    status = db.Column(
        db.Enum(
            ComplaintStatus,
            values_callable=_enum_values,
            name="complaintstatus",
            validate_strings=True,
        ),
        nullable=False,
        default=ComplaintStatus.submitted,
        index=True,
    )
    department = db.Column(db.String(40))
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime)
    acknowledged_replacement_qty = db.Column(db.Integer)
    acknowledged_replacement_hybrid = db.Column(db.String(120))
    resolution = db.Column(db.Text)
    resolution_summary = db.Column(db.Text)
    resolved_at = db.Column(db.DateTime)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    customer_satisfaction_rating = db.Column(db.Integer)
    customer_feedback = db.Column(db.Text)
    feedback_quick_answers = db.Column(db.JSON)
    feedback_submitted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    assignee = db.relationship("User", foreign_keys=[assigned_to])
    responses = db.relationship(
        "ComplaintResponse",
        backref="complaint",
        order_by="ComplaintResponse.created_at",
        cascade="all, delete-orphan",
    )
    history = db.relationship(
        "ComplaintHistory",
        backref="complaint",
        order_by="ComplaintHistory.created_at",
        cascade="all, delete-orphan",
    )
    assignments = db.relationship(
        "ComplaintAssignment",
        backref="complaint",
        order_by="ComplaintAssignment.assigned_at",
        cascade="all, delete-orphan",
    )
    investigation = db.relationship(
        "ComplaintInvestigation",
        backref="complaint",
        uselist=False,
        cascade="all, delete-orphan",
    )
    observation = db.relationship(
        "ComplaintObservation",
        backref="complaint",
        uselist=False,
        cascade="all, delete-orphan",
    )
    lab_test = db.relationship(
        "ComplaintLabTest",
        backref="complaint",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def active_assignment(self):
        return next((item for item in self.assignments if item.is_active), None)


class ComplaintResponse(db.Model):
    __tablename__ = "complaint_responses"

    id = db.Column(db.Integer, primary_key=True)
    complaint_id = db.Column(db.Integer, db.ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    response_type = db.Column(db.String(40), nullable=False, default="reply")
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    admin_name = db.Column(db.String(120))
    is_customer_response = db.Column(db.Boolean, nullable=False, default=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    is_auto_response = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class ComplaintHistory(db.Model):
    __tablename__ = "complaint_history"

    id = db.Column(db.Integer, primary_key=True)
    complaint_id = db.Column(db.Integer, db.ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(60), nullable=False)
    old_value = db.Column(db.String(255))
    new_value = db.Column(db.String(255))
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class ComplaintAssignment(db.Model):
    __tablename__ = "complaint_assignments"

    id = db.Column(db.Integer, primary_key=True)
    complaint_id = db.Column(db.Integer, db.ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assignment_reason = db.Column(db.Text)
    previous_assignee = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    unassigned_at = db.Column(db.DateTime)
    unassigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)


class ComplaintInvestigation(db.Model):
    __tablename__ = "complaint_investigations"

    id = db.Column(db.Integer, primary_key=True)
    complaint_id = db.Column(
        db.Integer,
        db.ForeignKey("complaints.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    investigator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    investigator_name = db.Column(db.String(120))
    investigator_position = db.Column(db.String(120))
    investigation_date = db.Column(db.Date)
    complaint_location = db.Column(db.String(255))
    farmer_name = db.Column(db.String(120))
    complaint_type = db.Column(db.String(60))
    seed_variety = db.Column(db.String(120))
    lot_number_check = db.Column(db.String(120))
    problematic_quantity_kg = db.Column(db.Float)
    planting_date = db.Column(db.Date)
    label_expired_date = db.Column(db.Date)
    purchase_date = db.Column(db.Date)
    purchase_place = db.Column(db.String(255))
    purchase_address = db.Column(db.Text)
    cause_category = db.Column(db.String(60))
    findings = db.Column(db.JSON, nullable=False, default=dict)
    problem_description = db.Column(db.Text)
    action_taken = db.Column(db.Text)
    investigation_conclusion = db.Column(db.Text)
    root_cause_determination = db.Column(db.Text)
    long_term_corrective_action = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ComplaintObservation(db.Model):
    """Field visit record kept before the formal investigation."""

    __tablename__ = "complaint_observations"

    id = db.Column(db.Integer, primary_key=True)
    complaint_id = db.Column(
        db.Integer,
        db.ForeignKey("complaints.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    observer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    observer_name = db.Column(db.String(120))
    observer_position = db.Column(db.String(120))
    observation_date = db.Column(db.Date)
    planting_date = db.Column(db.Date)
    label_expired_date = db.Column(db.Date)
    purchase_date = db.Column(db.Date)
    purchase_place = db.Column(db.String(255))
    purchase_address = db.Column(db.Text)
    is_germination_issue = db.Column(db.Boolean, nullable=False, default=False)
    germination_below_85 = db.Column(db.Boolean, nullable=False, default=False)
    seed_not_found = db.Column(db.Boolean, nullable=False, default=False)
    seed_not_grow_soil = db.Column(db.Boolean, nullable=False, default=False)
    seed_damaged_chemical = db.Column(db.Boolean, nullable=False, default=False)
    seed_damaged_insect = db.Column(db.Boolean, nullable=False, default=False)
    fungal_infection = db.Column(db.Boolean, nullable=False, default=False)
    seed_excavated = db.Column(db.Boolean, nullable=False, default=False)
    additional_seed_treatment = db.Column(db.Boolean, nullable=False, default=False)
    seed_soaking = db.Column(db.Boolean, nullable=False, default=False)
    planting_depth_over_7cm = db.Column(db.Boolean, nullable=False, default=False)
    has_purchase_proof = db.Column(db.Boolean, nullable=False, default=False)
    has_packaging_evidence = db.Column(db.Boolean, nullable=False, default=False)
    replacement_qty = db.Column(db.Integer)
    replacement_hybrid = db.Column(db.String(120))
    observation_result = db.Column(db.Text)
    general_notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ComplaintLabTest(db.Model):
    """Laboratory results for the market sample and the retained guard sample."""

    __tablename__ = "complaint_lab_tests"

    id = db.Column(db.Integer, primary_key=True)
    complaint_id = db.Column(
        db.Integer,
        db.ForeignKey("complaints.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    technician_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    lab_technician_name = db.Column(db.String(120))
    testing_method = db.Column(db.String(120))
    market_sample_received_date = db.Column(db.Date)
    market_germination_result_date = db.Column(db.Date)
    market_vigour_result_date = db.Column(db.Date)
    market_germination_percent = db.Column(db.Float)
    market_vigour_percent = db.Column(db.Float)
    market_physical_purity_percent = db.Column(db.Float)
    market_mc_percent = db.Column(db.Float)
    market_genetic_purity_percent = db.Column(db.Float)
    market_result = db.Column(db.Text)
    guard_sample_received_date = db.Column(db.Date)
    guard_germination_result_date = db.Column(db.Date)
    guard_vigour_result_date = db.Column(db.Date)
    guard_germination_percent = db.Column(db.Float)
    guard_vigour_percent = db.Column(db.Float)
    guard_physical_purity_percent = db.Column(db.Float)
    guard_mc_percent = db.Column(db.Float)
    guard_genetic_purity_percent = db.Column(db.Float)
    guard_result = db.Column(db.Text)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ComplaintCategory(db.Model):
    __tablename__ = "complaint_categories"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(60), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    auto_assign_department = db.Column(db.String(40))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class VerificationFailureReport(db.Model):
    __tablename__ = "verification_failure_reports"

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(120), nullable=False)
    error_message = db.Column(db.Text)
    reporter_ip = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
