"""complaint observation, lab testing and categories

Revision ID: 2b3c4d5e6f7a
Revises: 1a2b3c4d5e6f
Create Date: 2026-10-19 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "2b3c4d5e6f7a"
down_revision = "1a2b3c4d5e6f"
branch_labels = None
depends_on = None


OBSERVATION_FLAGS = (
    "is_germination_issue",
    "germination_below_85",
    "seed_not_found",
    "seed_not_grow_soil",
    "seed_damaged_chemical",
    "seed_damaged_insect",
    "fungal_infection",
    "seed_excavated",
    "additional_seed_treatment",
    "seed_soaking",
    "planting_depth_over_7cm",
    "has_purchase_proof",
    "has_packaging_evidence",
)

LAB_MEASUREMENTS = (
    "germination_percent",
    "vigour_percent",
    "physical_purity_percent",
    "mc_percent",
    "genetic_purity_percent",
)


def _sample_columns(prefix):
    columns = [
        sa.Column(f"{prefix}_sample_received_date", sa.Date()),
        sa.Column(f"{prefix}_germination_result_date", sa.Date()),
        sa.Column(f"{prefix}_vigour_result_date", sa.Date()),
    ]
    columns.extend(sa.Column(f"{prefix}_{name}", sa.Float()) for name in LAB_MEASUREMENTS)
    columns.append(sa.Column(f"{prefix}_result", sa.Text()))
    return columns


def upgrade():
    op.create_table(
        "complaint_observations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "complaint_id",
            sa.Integer(),
            sa.ForeignKey("complaints.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("observer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("observer_name", sa.String(length=120)),
        sa.Column("observer_position", sa.String(length=120)),
        sa.Column("observation_date", sa.Date()),
        sa.Column("planting_date", sa.Date()),
        sa.Column("label_expired_date", sa.Date()),
        sa.Column("purchase_date", sa.Date()),
        sa.Column("purchase_place", sa.String(length=255)),
        sa.Column("purchase_address", sa.Text()),
        *[
            sa.Column(flag, sa.Boolean(), nullable=False, server_default=sa.false())
            for flag in OBSERVATION_FLAGS
        ],
        sa.Column("replacement_qty", sa.Integer()),
        sa.Column("replacement_hybrid", sa.String(length=120)),
        sa.Column("observation_result", sa.Text()),
        sa.Column("general_notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "complaint_lab_tests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "complaint_id",
            sa.Integer(),
            sa.ForeignKey("complaints.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("technician_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("lab_technician_name", sa.String(length=120)),
        sa.Column("testing_method", sa.String(length=120)),
        *_sample_columns("market"),
        *_sample_columns("guard"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "complaint_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=60), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("auto_assign_department", sa.String(length=40)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("complaint_categories")
    op.drop_table("complaint_lab_tests")
    op.drop_table("complaint_observations")
