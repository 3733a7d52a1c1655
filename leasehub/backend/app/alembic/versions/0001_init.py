"""init tenancy schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _status(length: int = 30):
    return sa.String(length=length)


def _money():
    return sa.Numeric(12, 2)


def upgrade():
    op.create_table(
        "app_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("mobile", sa.String(length=40), nullable=True),
        sa.Column("display_name", sa.String(length=160), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="tenant"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_app_users_email", "app_users", ["email"], unique=True)

    op.create_table(
        "owners",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_owners_user_id", "owners", ["user_id"], unique=True)

    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("owners.id"), nullable=True),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("emirates_id", sa.String(length=40), nullable=True),
        sa.Column("passport_number", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tenants_user_id", "tenants", ["user_id"], unique=True)
    op.create_index("ix_tenants_owner_id", "tenants", ["owner_id"])

    # current_lease_id FK is added after leases exists
    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("owners.id"), nullable=False),
        sa.Column("property_name", sa.String(length=255), nullable=False),
        sa.Column("price", _money(), nullable=False, server_default="0"),
        sa.Column("status", _status(), nullable=False, server_default="vacant"),
        sa.Column("current_lease_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])
    op.create_index("ix_properties_status", "properties", ["status"])

    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("status", _status(), nullable=False, server_default="pending"),
        sa.Column("applicant_info_json", sa.Text(), nullable=True),
        sa.Column("employment_details_json", sa.Text(), nullable=True),
        sa.Column("move_in_date", sa.Date(), nullable=True),
        sa.Column("viewing_date", sa.Date(), nullable=True),
        sa.Column("viewing_time", sa.String(length=20), nullable=True),
        sa.Column("ejari_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("offer_amount", _money(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("background_check_status", sa.String(length=40), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_applications_property_id", "applications", ["property_id"])
    op.create_index("ix_applications_tenant_id", "applications", ["tenant_id"])
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index(
        "uq_applications_open_per_tenant",
        "applications",
        ["property_id", "tenant_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'under_review')"),
        sqlite_where=sa.text("status IN ('pending', 'under_review')"),
    )

    op.create_table(
        "leases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("owners.id"), nullable=False),
        sa.Column("previous_lease_id", sa.Integer(), sa.ForeignKey("leases.id"), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("rent_amount", _money(), nullable=False),
        sa.Column("security_deposit", _money(), nullable=False, server_default="0"),
        sa.Column("status", _status(), nullable=False, server_default="active"),
        sa.Column("ejari_number", sa.String(length=80), nullable=True),
        sa.Column("ejari_status", _status(), nullable=False, server_default="pending"),
        sa.Column("terms_json", sa.Text(), nullable=True),
        sa.Column("contract_document_url", sa.Text(), nullable=True),
        sa.Column("contract_uploaded_at", sa.DateTime(), nullable=True),
        sa.Column("contract_uploaded_by", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
        sa.Column("cheque_count", sa.Integer(), nullable=True),
        sa.Column("payment_method", _status(), nullable=True),
        sa.Column("payment_plan_json", sa.Text(), nullable=True),
        sa.Column("termination_reason", sa.Text(), nullable=True),
        sa.Column("move_out_inspection_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_leases_application_id", "leases", ["application_id"])
    op.create_index("ix_leases_property_id", "leases", ["property_id"])
    op.create_index("ix_leases_tenant_id", "leases", ["tenant_id"])
    op.create_index("ix_leases_owner_id", "leases", ["owner_id"])
    op.create_index("ix_leases_status", "leases", ["status"])
    op.create_index(
        "uq_leases_one_active_per_property",
        "leases",
        ["property_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    with op.batch_alter_table("properties") as batch:
        batch.create_foreign_key(
            "fk_properties_current_lease_id", "leases", ["current_lease_id"], ["id"]
        )

    op.create_table(
        "rent_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("owners.id"), nullable=False),
        sa.Column("installment_number", sa.Integer(), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("payment_method", _status(), nullable=True),
        sa.Column("payment_status", _status(), nullable=False, server_default="pending"),
        sa.Column("transaction_reference", sa.String(length=120), nullable=True),
        sa.Column("receipt_url", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reminder_lead_days", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("lease_id", "installment_number", name="uq_rent_payments_lease_installment"),
    )
    op.create_index("ix_rent_payments_lease_id", "rent_payments", ["lease_id"])
    op.create_index("ix_rent_payments_tenant_id", "rent_payments", ["tenant_id"])
    op.create_index("ix_rent_payments_property_id", "rent_payments", ["property_id"])
    op.create_index("ix_rent_payments_owner_id", "rent_payments", ["owner_id"])
    op.create_index("ix_rent_payments_due_date", "rent_payments", ["due_date"])
    op.create_index("ix_rent_payments_payment_status", "rent_payments", ["payment_status"])

    op.create_table(
        "notification_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("action", sa.String(length=40), nullable=True),
        sa.Column("recipient_role", sa.String(length=20), nullable=False),
        sa.Column("recipient_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
        sa.Column("recipient_email", sa.String(length=200), nullable=True),
        sa.Column("recipient_name", sa.String(length=200), nullable=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=True),
        sa.Column("property_name", sa.String(length=255), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_notification_events_event_type", "notification_events", ["event_type"])
    op.create_index("ix_notification_events_property_id", "notification_events", ["property_id"])
    op.create_index("ix_notification_events_status", "notification_events", ["status"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=80), nullable=False),
        sa.Column("entity_id", sa.String(length=80), nullable=False),
        sa.Column("before_json", sa.Text(), nullable=True),
        sa.Column("after_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("audit_events")
    op.drop_table("notification_events")
    op.drop_table("rent_payments")
    with op.batch_alter_table("properties") as batch:
        batch.drop_constraint("fk_properties_current_lease_id", type_="foreignkey")
    op.drop_table("leases")
    op.drop_table("applications")
    op.drop_table("properties")
    op.drop_table("tenants")
    op.drop_table("owners")
    op.drop_table("app_users")
