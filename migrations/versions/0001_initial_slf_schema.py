"""initial_slf_schema

Create the SLF workflow schema: clients, profiles, projects and teams,
inspections with checklist and photos, reports with the approval log,
notifications and the audit trail.

Revision ID: 0001_initial_slf_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001_initial_slf_schema"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "clients" not in existing_tables:
        op.create_table(
            "clients",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("company_name", sa.String(length=200), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("external_id", sa.String(length=64), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("role", sa.String(length=40), nullable=False, server_default="client"),
            sa.Column("specialization", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            _ts("approved_at"),
            sa.Column("client_id", sa.Integer(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            _ts("deleted_at"),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("external_id"),
        )
        op.create_index("ix_profiles_client_id", "profiles", ["client_id"])
        op.create_index("ix_profiles_deleted_at", "profiles", ["deleted_at"])
        op.create_index("ix_profiles_role_status", "profiles", ["role", "status"])
        op.create_index(
            "uq_profiles_email_active",
            "profiles",
            ["email"],
            unique=True,
            postgresql_where=sa.text("deleted_at IS NULL"),
            sqlite_where=sa.text("deleted_at IS NULL"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("client_id", sa.Integer(), nullable=False),
            sa.Column("project_lead_id", sa.Integer(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("building_function", sa.String(length=100), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("city", sa.String(length=100), nullable=True),
            sa.Column("imb_number", sa.String(length=100), nullable=True),
            sa.Column("floor_count", sa.Integer(), nullable=True),
            sa.Column("building_area", sa.Float(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["project_lead_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_client_id", "projects", ["client_id"])
        op.create_index("ix_projects_project_lead_id", "projects", ["project_lead_id"])
        op.create_index("ix_projects_status", "projects", ["status"])

    if "project_team_members" not in existing_tables:
        op.create_table(
            "project_team_members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("profile_id", sa.Integer(), nullable=False),
            sa.Column("team_role", sa.String(length=30), nullable=False),
            sa.Column("assigned_by_id", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_by_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "project_id", "profile_id", "team_role", name="uq_team_member_project_profile_role",
            ),
        )
        op.create_index("ix_project_team_members_project_id", "project_team_members", ["project_id"])
        op.create_index("ix_project_team_members_profile_id", "project_team_members", ["profile_id"])
        op.create_index(
            "uq_team_single_project_lead",
            "project_team_members",
            ["project_id"],
            unique=True,
            postgresql_where=sa.text("team_role = 'project_lead'"),
            sqlite_where=sa.text("team_role = 'project_lead'"),
        )

    if "inspections" not in existing_tables:
        op.create_table(
            "inspections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("inspector_id", sa.Integer(), nullable=True),
            sa.Column("checklist_template", sa.String(length=50), nullable=False,
                      server_default="slf_default"),
            _ts("scheduled_start", nullable=False),
            _ts("scheduled_end"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
            sa.Column("summary", sa.Text(), nullable=True),
            _ts("started_at"),
            _ts("completed_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["inspector_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_inspections_project_id", "inspections", ["project_id"])
        op.create_index("ix_inspections_inspector_id", "inspections", ["inspector_id"])
        op.create_index("ix_inspections_status", "inspections", ["status"])

    if "checklist_items" not in existing_tables:
        op.create_table(
            "checklist_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template", sa.String(length=50), nullable=False, server_default="slf_default"),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=False),
            sa.Column("question", sa.Text(), nullable=False),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("template", "code", name="uq_checklist_item_template_code"),
        )
        op.create_index("ix_checklist_items_template", "checklist_items", ["template"])

    if "checklist_responses" not in existing_tables:
        op.create_table(
            "checklist_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("inspection_id", sa.Integer(), nullable=False),
            sa.Column("checklist_item_id", sa.Integer(), nullable=False),
            sa.Column("responder_id", sa.Integer(), nullable=False),
            sa.Column("response", sa.JSON(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["inspection_id"], ["inspections.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["checklist_item_id"], ["checklist_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["responder_id"], ["profiles.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "inspection_id", "checklist_item_id", "responder_id",
                name="uq_checklist_response_inspection_item_responder",
            ),
        )
        op.create_index("ix_checklist_responses_inspection_id", "checklist_responses", ["inspection_id"])

    if "inspection_photos" not in existing_tables:
        op.create_table(
            "inspection_photos",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("inspection_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("checklist_item_id", sa.Integer(), nullable=True),
            sa.Column("uploaded_by_id", sa.Integer(), nullable=True),
            sa.Column("storage_path", sa.String(length=500), nullable=False),
            sa.Column("caption", sa.String(length=300), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            _ts("taken_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["inspection_id"], ["inspections.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["checklist_item_id"], ["checklist_items.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["uploaded_by_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_inspection_photos_inspection_id", "inspection_photos", ["inspection_id"])
        op.create_index("ix_inspection_photos_project_id", "inspection_photos", ["project_id"])

    if "reports" not in existing_tables:
        op.create_table(
            "reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("inspection_id", sa.Integer(), nullable=True),
            sa.Column("author_id", sa.Integer(), nullable=True),
            sa.Column("supersedes_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("findings", sa.Text(), nullable=True),
            sa.Column("recommendations", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=40), nullable=False, server_default="draft"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            _ts("submitted_at"),
            _ts("issued_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["inspection_id"], ["inspections.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["author_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["supersedes_id"], ["reports.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_reports_project_id", "reports", ["project_id"])
        op.create_index("ix_reports_inspection_id", "reports", ["inspection_id"])
        op.create_index("ix_reports_author_id", "reports", ["author_id"])
        op.create_index("ix_reports_status", "reports", ["status"])

    if "approvals" not in existing_tables:
        op.create_table(
            "approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("report_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=True),
            sa.Column("role", sa.String(length=40), nullable=False),
            sa.Column("action", sa.String(length=10), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["report_id"], ["reports.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approvals_report_id", "approvals", ["report_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="info"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("related_type", sa.String(length=30), nullable=True),
            sa.Column("related_id", sa.Integer(), nullable=True),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            _ts("read_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["recipient_id"], ["profiles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["actor_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
        op.create_index("ix_notifications_recipient_read", "notifications", ["recipient_id", "read_at"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("request_id", sa.String(length=36), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["actor_id"], ["profiles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_project_id", "audit_logs", ["project_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # Children first; indexes go with their tables
    for table in (
        "audit_logs",
        "notifications",
        "approvals",
        "reports",
        "inspection_photos",
        "checklist_responses",
        "checklist_items",
        "inspections",
        "project_team_members",
        "projects",
        "profiles",
        "clients",
    ):
        if table in existing_tables:
            op.drop_table(table)
