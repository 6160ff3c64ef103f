"""create zone, authz and audit tables with the default grant seed

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


AUDIT_IMMUTABLE_FUNCTION = """
CREATE OR REPLACE FUNCTION audit_logs_reject_change() RETURNS trigger AS $$
begin
    raise exception 'audit_logs rows are append-only (% on id %)', TG_OP, old.id;
end
$$ LANGUAGE plpgsql;
"""

AUDIT_IMMUTABLE_TRIGGER = """
CREATE TRIGGER trg_audit_logs_immutable BEFORE UPDATE OR DELETE ON audit_logs
FOR EACH ROW EXECUTE FUNCTION audit_logs_reject_change();
"""


ROLES = [
    (1, "super_admin", "Full system access"),
    (2, "zone_admin", "Full control within assigned zone"),
    (3, "manager", "Team management and reporting"),
    (4, "staff", "Own leads/tasks only"),
    (5, "viewer", "Read-only access"),
]

CAPABILITIES = [
    ("core.user.read", "View Users", "core", "Read the user directory"),
    ("core.user.manage", "Manage Users", "core", "Create/edit/delete users"),
    ("core.zone.manage", "Manage Zones", "core", "Create/edit zone hierarchy"),
    ("core.role.manage", "Manage Roles", "core", "Assign/modify roles"),
    ("lead.create", "Create Lead", "leads", "Create new leads"),
    ("lead.read", "View Leads", "leads", "View leads"),
    ("lead.edit", "Edit Lead", "leads", "Edit lead details"),
    ("lead.assign", "Assign Lead", "leads", "Reassign lead ownership"),
    ("lead.delete", "Delete Lead", "leads", "Delete lead"),
    ("project.create", "Create Project", "projects", "Create project from lead"),
    ("project.read", "View Projects", "projects", "View projects"),
    ("project.edit", "Edit Project", "projects", "Edit project"),
    ("project.transition", "Transition Stage", "projects", "Move project stage"),
    ("task.create", "Create Task", "tasks", "Create task"),
    ("task.read", "View Tasks", "tasks", "View assigned tasks"),
    ("task.edit", "Edit Task", "tasks", "Edit task"),
    ("task.assign", "Assign Task", "tasks", "Assign task to user"),
    ("meeting.create", "Schedule Meeting", "meetings", "Create meeting"),
    ("meeting.read", "View Meetings", "meetings", "View meetings"),
    ("meeting.edit", "Edit Meeting", "meetings", "Edit meeting"),
    ("pricing.read", "View Pricing", "pricing", "View price lists"),
    ("pricing.edit", "Edit Pricing", "pricing", "Create/edit prices"),
    ("pricing.apply", "Apply Pricing", "pricing", "Apply pricing to lead/project"),
    ("report.view", "View Reports", "reports", "View zone reports"),
    ("report.export", "Export Reports", "reports", "Export to CSV/PDF"),
]

_ALL_CODES = [code for code, _name, _module, _description in CAPABILITIES]

GRANTS = {
    "super_admin": _ALL_CODES,
    "zone_admin": [code for code in _ALL_CODES if code not in {"core.zone.manage", "core.role.manage"}],
    "manager": [
        code for code, _name, module, _description in CAPABILITIES if module in {"leads", "projects", "tasks", "meetings"}
    ]
    + ["pricing.read", "pricing.apply", "report.view", "report.export"],
    "staff": [
        "lead.read",
        "lead.create",
        "lead.edit",
        "project.read",
        "task.read",
        "task.create",
        "task.edit",
        "meeting.read",
        "meeting.create",
        "pricing.read",
    ],
    "viewer": ["lead.read", "project.read", "task.read", "meeting.read", "pricing.read", "report.view"],
}


def upgrade() -> None:
    op.create_table(
        "authz_role",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "authz_capability",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("module", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_authz_capability_code", "authz_capability", ["code"], unique=True)
    op.create_index("ix_authz_capability_module", "authz_capability", ["module"])

    op.create_table(
        "authz_role_capability",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("capability_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["capability_id"], ["authz_capability.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["authz_role.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "capability_id"),
        sa.UniqueConstraint("role_id", "capability_id", name="uq_authz_role_capability"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "zones",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["zones.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_zones_code", "zones", ["code"], unique=True)
    op.create_index("ix_zones_parent_id", "zones", ["parent_id"])
    op.create_index("ix_zones_level", "zones", ["level"])

    op.create_table(
        "zone_memberships",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("zone_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["zone_id"], ["zones.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role"], ["authz_role.name"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "zone_id", name="uq_zone_membership_user_zone"),
    )
    op.create_index("ix_zone_memberships_user_id", "zone_memberships", ["user_id"])
    op.create_index("ix_zone_memberships_zone_id", "zone_memberships", ["zone_id"])
    op.create_index("ix_zone_memberships_role", "zone_memberships", ["role"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("zone_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_zone_id", "audit_logs", ["zone_id"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_correlation_id", "audit_logs", ["correlation_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    if op.get_bind().dialect.name == "postgresql":
        op.execute(AUDIT_IMMUTABLE_FUNCTION)
        op.execute(AUDIT_IMMUTABLE_TRIGGER)

    _seed_grants()


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_audit_logs_immutable ON audit_logs")
        op.execute("DROP FUNCTION IF EXISTS audit_logs_reject_change()")
    op.drop_table("audit_logs")
    op.drop_table("zone_memberships")
    op.drop_table("zones")
    op.drop_table("users")
    op.drop_table("authz_role_capability")
    op.drop_table("authz_capability")
    op.drop_table("authz_role")


def _seed_grants() -> None:
    now = datetime.now(timezone.utc)

    role_table = sa.table(
        "authz_role",
        sa.column("id", sa.Integer()),
        sa.column("name", sa.String()),
        sa.column("description", sa.Text()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        role_table,
        [{"id": role_id, "name": name, "description": description, "created_at": now} for role_id, name, description in ROLES],
    )

    capability_ids = {code: index for index, (code, _name, _module, _description) in enumerate(CAPABILITIES, start=1)}
    capability_table = sa.table(
        "authz_capability",
        sa.column("id", sa.Integer()),
        sa.column("code", sa.String()),
        sa.column("name", sa.String()),
        sa.column("module", sa.String()),
        sa.column("description", sa.Text()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        capability_table,
        [
            {
                "id": capability_ids[code],
                "code": code,
                "name": name,
                "module": module,
                "description": description,
                "created_at": now,
            }
            for code, name, module, description in CAPABILITIES
        ],
    )

    role_ids = {name: role_id for role_id, name, _description in ROLES}
    role_capability_table = sa.table(
        "authz_role_capability",
        sa.column("role_id", sa.Integer()),
        sa.column("capability_id", sa.Integer()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    links: list[dict[str, object]] = []
    for role_name, codes in GRANTS.items():
        for code in codes:
            links.append({"role_id": role_ids[role_name], "capability_id": capability_ids[code], "created_at": now})
    op.bulk_insert(role_capability_table, links)

    if op.get_bind().dialect.name == "postgresql":
        op.execute("SELECT setval(pg_get_serial_sequence('authz_role', 'id'), (SELECT MAX(id) FROM authz_role))")
        op.execute(
            "SELECT setval(pg_get_serial_sequence('authz_capability', 'id'), (SELECT MAX(id) FROM authz_capability))"
        )
