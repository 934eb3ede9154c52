"""users, contacts, wills and check-in schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None

CONTACT_STATUS = sa.Enum("PENDING", "VERIFIED", "DECLINED", name="contact_status")
RESPONDER_ROLE = sa.Enum("USER", "BENEFICIARY", "EXECUTOR", name="responder_role")
WILL_STATUS = sa.Enum("DRAFT", "COMPLETED", "PENDING_VERIFICATION", "RELEASED", name="will_status")


def _contact_table(name: str, unique_name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("status", CONTACT_STATUS, nullable=False),
        sa.Column("invitation_code_hash", sa.String(length=255), nullable=True),
        sa.Column("invitation_code_expiry", sa.DateTime(), nullable=True),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "email", name=unique_name),
    )
    op.create_index(f"ix_{name}_user_id", name, ["user_id"])


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_code", sa.String(length=6), nullable=True),
        sa.Column("verification_code_expiry", sa.DateTime(), nullable=True),
        sa.Column("reset_password_token", sa.String(length=64), nullable=True),
        sa.Column("reset_password_expiry", sa.DateTime(), nullable=True),
        sa.Column("last_check_in", sa.DateTime(), nullable=True),
        sa.Column("next_check_in_due", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_reset_password_token", "users", ["reset_password_token"])
    op.create_index("ix_users_next_check_in_due", "users", ["next_check_in_due"])

    _contact_table("beneficiaries", "uq_beneficiary_user_email")
    _contact_table("executors", "uq_executor_user_email")

    op.create_table(
        "wills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("status", WILL_STATUS, nullable=False),
        sa.Column("previous_status", sa.String(length=30), nullable=True),
        sa.Column("is_released", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_started_at", sa.DateTime(), nullable=True),
        sa.Column("released_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_wills_user_status", "wills", ["user_id", "status"])

    op.create_table(
        "check_in_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("responder_role", RESPONDER_ROLE, nullable=False),
        sa.Column("beneficiary_id", sa.Integer(), sa.ForeignKey("beneficiaries.id"), nullable=True),
        sa.Column("executor_id", sa.Integer(), sa.ForeignKey("executors.id"), nullable=True),
        sa.Column("responder_email", sa.String(length=255), nullable=False),
        sa.Column("is_alive", sa.Boolean(), nullable=False),
        sa.Column("dedupe_key", sa.String(length=64), nullable=False),
        sa.Column("response_date", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("dedupe_key", name="uq_check_in_response_dedupe"),
    )
    op.create_index("ix_check_in_response_user_date", "check_in_responses", ["user_id", "response_date"])

    op.create_table(
        "death_verification_otps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("verifier_role", RESPONDER_ROLE, nullable=False),
        sa.Column("beneficiary_id", sa.Integer(), sa.ForeignKey("beneficiaries.id"), nullable=True),
        sa.Column("executor_id", sa.Integer(), sa.ForeignKey("executors.id"), nullable=True),
        sa.Column("verifier_email", sa.String(length=255), nullable=False),
        sa.Column("code_hash", sa.String(length=255), nullable=False),
        sa.Column("round_started_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_death_otp_user_round", "death_verification_otps", ["user_id", "round_started_at"])


def downgrade():
    op.drop_index("ix_death_otp_user_round", table_name="death_verification_otps")
    op.drop_table("death_verification_otps")
    op.drop_index("ix_check_in_response_user_date", table_name="check_in_responses")
    op.drop_table("check_in_responses")
    op.drop_index("ix_wills_user_status", table_name="wills")
    op.drop_table("wills")
    for name in ("executors", "beneficiaries"):
        op.drop_index(f"ix_{name}_user_id", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_users_next_check_in_due", table_name="users")
    op.drop_index("ix_users_reset_password_token", table_name="users")
    op.drop_table("users")
    WILL_STATUS.drop(op.get_bind(), checkfirst=True)
    RESPONDER_ROLE.drop(op.get_bind(), checkfirst=True)
    CONTACT_STATUS.drop(op.get_bind(), checkfirst=True)
