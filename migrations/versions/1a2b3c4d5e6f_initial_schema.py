"""initial schema

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "1a2b3c4d5e6f"
down_revision = None
branch_labels = None
depends_on = None


COMPLAINT_STATUSES = (
    "submitted",
    "acknowledged",
    "investigating",
    "pending_response",
    "resolved",
    "closed",
)


def upgrade():
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("label", sa.String(length=255)),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=80), nullable=False, unique=True),
        sa.Column("description", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_table(
        "role_has_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "permission_id",
            sa.Integer(),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("active", sa.Boolean()),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=True),
        sa.Column("department", sa.String(length=40)),
        sa.Column("complaint_permissions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_users_role_id", "users", ["role_id"])

    op.create_table(
        "provinces",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("code", sa.String(length=10)),
    )
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.Text()),
        sa.Column("province_id", sa.Integer(), sa.ForeignKey("provinces.id"), nullable=True),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_table(
        "seed_classes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("code", sa.String(length=20)),
    )
    op.create_table(
        "varieties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
    )
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=80), unique=True),
        sa.Column("category", sa.String(length=40)),
        sa.Column("plant_type", sa.String(length=120)),
        sa.Column("photo_path", sa.String(length=500)),
        sa.Column("seed_class_id", sa.Integer(), sa.ForeignKey("seed_classes.id"), nullable=True),
        sa.Column("variety_id", sa.Integer(), sa.ForeignKey("varieties.id"), nullable=True),
        sa.Column("active_ingredients", sa.JSON(), nullable=False),
    )

    op.create_table(
        "productions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("group_number", sa.String(length=80), nullable=False),
        sa.Column("code_1", sa.String(length=1), nullable=False),
        sa.Column("code_2", sa.String(length=1), nullable=False),
        sa.Column("code_3", sa.String(length=1), nullable=False),
        sa.Column("code_4", sa.String(length=1), nullable=False),
        sa.Column("clearance_number", sa.String(length=120)),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("target_certification_wide", sa.Float()),
        sa.Column("target_seed_class_id", sa.Integer(), sa.ForeignKey("seed_classes.id")),
        sa.Column("target_seed_production", sa.Float()),
        sa.Column("seed_source_company_id", sa.Integer(), sa.ForeignKey("companies.id")),
        sa.Column("seed_source_male_variety_id", sa.Integer(), sa.ForeignKey("varieties.id")),
        sa.Column("seed_source_female_variety_id", sa.Integer(), sa.ForeignKey("varieties.id")),
        sa.Column("seed_source_seed_class_id", sa.Integer(), sa.ForeignKey("seed_classes.id")),
        sa.Column("seed_source_serial_number", sa.String(length=120)),
        sa.Column("seed_source_male_lot_number", sa.String(length=120)),
        sa.Column("seed_source_female_lot_number", sa.String(length=120)),
        sa.Column("cert_realization_wide", sa.Float()),
        sa.Column("cert_realization_seed_production", sa.String(length=120)),
        sa.Column("cert_realization_harvest_date", sa.Date()),
        sa.Column("lot_number", sa.String(length=120), nullable=False),
        sa.Column("lot_seed_class_id", sa.Integer(), sa.ForeignKey("seed_classes.id")),
        sa.Column("lot_variety_id", sa.Integer(), sa.ForeignKey("varieties.id")),
        sa.Column("lot_volume", sa.Float()),
        sa.Column("lot_content", sa.Float()),
        sa.Column("lot_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lab_result_certification_number", sa.String(length=120)),
        sa.Column("lab_result_test_result", sa.Float()),
        sa.Column("lab_result_incoming_date", sa.Date()),
        sa.Column("lab_result_filing_date", sa.Date()),
        sa.Column("lab_result_testing_date", sa.Date()),
        sa.Column("lab_result_tested_date", sa.Date()),
        sa.Column("lab_result_serial_number", sa.String(length=40)),
        sa.Column("lab_result_expired_date", sa.Date()),
        sa.Column("test_param_moisture", sa.Float()),
        sa.Column("test_param_pure_seed", sa.Float()),
        sa.Column("test_param_other_variety", sa.Float()),
        sa.Column("test_param_other_crop_seed", sa.Float()),
        sa.Column("test_param_inert_matter", sa.Float()),
        sa.Column("test_param_germination", sa.Float()),
        sa.Column("docs_application_form", sa.String(length=500)),
        sa.Column("docs_field_inspection", sa.String(length=500)),
        sa.Column("docs_lab_test", sa.String(length=500)),
        sa.Column("docs_certification", sa.String(length=500)),
        sa.Column("import_qr_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("group_number", "lot_number", name="uq_production_group_lot"),
    )
    op.create_index("ix_productions_product_id", "productions", ["product_id"])
    op.create_index("ix_productions_company_id", "productions", ["company_id"])
    op.create_index("ix_productions_lot_number", "productions", ["lot_number"])
    op.create_index("ix_productions_cert_realization_harvest_date", "productions", ["cert_realization_harvest_date"])
    op.create_index("ix_productions_import_qr_at", "productions", ["import_qr_at"])

    op.create_table(
        "production_registers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "production_id",
            sa.Integer(),
            sa.ForeignKey("productions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("serial_number", sa.String(length=40), nullable=False),
        sa.Column("production_code", sa.String(length=10), nullable=False),
        sa.Column("search_key", sa.String(length=60), nullable=False),
        sa.Column("qr_code_link", sa.String(length=500)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_production_registers_production_id", "production_registers", ["production_id"])
    op.create_index("ix_production_registers_serial_number", "production_registers", ["serial_number"])
    op.create_index("ix_production_registers_search_key", "production_registers", ["search_key"])
    op.create_index(
        "ix_production_registers_production_serial",
        "production_registers",
        ["production_id", "serial_number"],
    )

    op.create_table(
        "user_complaint_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("department", sa.String(length=40), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_assigned_complaints", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("current_assigned_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_resolved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_resolution_hours", sa.Float()),
    )

    op.create_table(
        "complaints",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("complaint_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("customer_name", sa.String(length=200), nullable=False),
        sa.Column("customer_email", sa.String(length=200)),
        sa.Column("customer_phone", sa.String(length=40)),
        sa.Column("customer_province", sa.String(length=120), nullable=False),
        sa.Column("customer_city", sa.String(length=120), nullable=False),
        sa.Column("customer_address", sa.Text(), nullable=False),
        sa.Column("complaint_type", sa.String(length=60), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("related_product_serial", sa.String(length=60)),
        sa.Column("related_product_name", sa.String(length=255)),
        sa.Column("status", sa.Enum(*COMPLAINT_STATUSES, name="complaintstatus"), nullable=False),
        sa.Column("department", sa.String(length=40)),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assigned_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assigned_at", sa.DateTime()),
        sa.Column("acknowledged_replacement_qty", sa.Integer()),
        sa.Column("acknowledged_replacement_hybrid", sa.String(length=120)),
        sa.Column("resolution", sa.Text()),
        sa.Column("resolution_summary", sa.Text()),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("customer_satisfaction_rating", sa.Integer()),
        sa.Column("customer_feedback", sa.Text()),
        sa.Column("feedback_quick_answers", sa.JSON()),
        sa.Column("feedback_submitted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_complaints_status", "complaints", ["status"])
    op.create_index("ix_complaints_created_at", "complaints", ["created_at"])

    op.create_table(
        "complaint_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("complaint_id", sa.Integer(), sa.ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("response_type", sa.String(length=40), nullable=False),
        sa.Column("admin_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("admin_name", sa.String(length=120)),
        sa.Column("is_customer_response", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_auto_response", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_complaint_responses_complaint_id", "complaint_responses", ["complaint_id"])

    op.create_table(
        "complaint_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("complaint_id", sa.Integer(), sa.ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("old_value", sa.String(length=255)),
        sa.Column("new_value", sa.String(length=255)),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_complaint_history_complaint_id", "complaint_history", ["complaint_id"])

    op.create_table(
        "complaint_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("complaint_id", sa.Integer(), sa.ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assignment_reason", sa.Text()),
        sa.Column("previous_assignee", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.Column("unassigned_at", sa.DateTime()),
        sa.Column("unassigned_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("ix_complaint_assignments_complaint_id", "complaint_assignments", ["complaint_id"])

    op.create_table(
        "complaint_investigations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "complaint_id",
            sa.Integer(),
            sa.ForeignKey("complaints.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("investigator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("investigator_name", sa.String(length=120)),
        sa.Column("investigator_position", sa.String(length=120)),
        sa.Column("investigation_date", sa.Date()),
        sa.Column("complaint_location", sa.String(length=255)),
        sa.Column("farmer_name", sa.String(length=120)),
        sa.Column("complaint_type", sa.String(length=60)),
        sa.Column("seed_variety", sa.String(length=120)),
        sa.Column("lot_number_check", sa.String(length=120)),
        sa.Column("problematic_quantity_kg", sa.Float()),
        sa.Column("planting_date", sa.Date()),
        sa.Column("label_expired_date", sa.Date()),
        sa.Column("purchase_date", sa.Date()),
        sa.Column("purchase_place", sa.String(length=255)),
        sa.Column("purchase_address", sa.Text()),
        sa.Column("cause_category", sa.String(length=60)),
        sa.Column("findings", sa.JSON(), nullable=False),
        sa.Column("problem_description", sa.Text()),
        sa.Column("action_taken", sa.Text()),
        sa.Column("investigation_conclusion", sa.Text()),
        sa.Column("root_cause_determination", sa.Text()),
        sa.Column("long_term_corrective_action", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "verification_failure_reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("serial_number", sa.String(length=120), nullable=False),
        sa.Column("error_message", sa.Text()),
        sa.Column("reporter_ip", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("verification_failure_reports")
    op.drop_table("complaint_investigations")
    op.drop_index("ix_complaint_assignments_complaint_id", table_name="complaint_assignments")
    op.drop_table("complaint_assignments")
    op.drop_index("ix_complaint_history_complaint_id", table_name="complaint_history")
    op.drop_table("complaint_history")
    op.drop_index("ix_complaint_responses_complaint_id", table_name="complaint_responses")
    op.drop_table("complaint_responses")
    op.drop_index("ix_complaints_created_at", table_name="complaints")
    op.drop_index("ix_complaints_status", table_name="complaints")
    op.drop_table("complaints")
    sa.Enum(name="complaintstatus").drop(op.get_bind(), checkfirst=True)
    op.drop_table("user_complaint_profiles")
    op.drop_index("ix_production_registers_production_serial", table_name="production_registers")
    op.drop_index("ix_production_registers_search_key", table_name="production_registers")
    op.drop_index("ix_production_registers_serial_number", table_name="production_registers")
    op.drop_index("ix_production_registers_production_id", table_name="production_registers")
    op.drop_table("production_registers")
    op.drop_index("ix_productions_import_qr_at", table_name="productions")
    op.drop_index("ix_productions_cert_realization_harvest_date", table_name="productions")
    op.drop_index("ix_productions_lot_number", table_name="productions")
    op.drop_index("ix_productions_company_id", table_name="productions")
    op.drop_index("ix_productions_product_id", table_name="productions")
    op.drop_table("productions")
    op.drop_table("products")
    op.drop_table("varieties")
    op.drop_table("seed_classes")
    op.drop_table("companies")
    op.drop_table("provinces")
    op.drop_index("ix_users_role_id", table_name="users")
    op.drop_table("users")
    op.drop_table("role_has_permissions")
    op.drop_table("roles")
    op.drop_table("permissions")
