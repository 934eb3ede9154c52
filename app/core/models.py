from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum, ForeignKey, Index, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware inserts.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ContactStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    DECLINED = "declined"


class ResponderRole(str, Enum):
    USER = "user"
    BENEFICIARY = "beneficiary"
    EXECUTOR = "executor"


class WillStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    PENDING_VERIFICATION = "pending_verification"
    RELEASED = "released"


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    # email doubles as the login name
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    is_email_verified: Mapped[bool] = mapped_column(default=False, nullable=False)
    verification_code: Mapped[str | None] = mapped_column(db.String(6), nullable=True)
    verification_code_expiry: Mapped[datetime | None] = mapped_column(nullable=True)
    reset_password_token: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    reset_password_expiry: Mapped[datetime | None] = mapped_column(nullable=True)
    last_check_in: Mapped[datetime | None] = mapped_column(nullable=True)
    next_check_in_due: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    beneficiaries = relationship("Beneficiary", back_populates="user", order_by="Beneficiary.id")
    executors = relationship("Executor", back_populates="user", order_by="Executor.id")
    wills = relationship("Will", back_populates="user", order_by="Will.id")

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def verified_contacts(self) -> list[Beneficiary | Executor]:
        contacts: list[Beneficiary | Executor] = []
        contacts.extend(e for e in self.executors if e.status == ContactStatus.VERIFIED)
        contacts.extend(b for b in self.beneficiaries if b.status == ContactStatus.VERIFIED)
        return contacts


class Beneficiary(db.Model):
    __tablename__ = "beneficiaries"
    __table_args__ = (UniqueConstraint("user_id", "email", name="uq_beneficiary_user_email"),)

    responder_role = ResponderRole.BENEFICIARY

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    status: Mapped[ContactStatus] = mapped_column(
        SAEnum(ContactStatus, name="contact_status"),
        nullable=False,
        default=ContactStatus.PENDING,
    )
    invitation_code_hash: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    invitation_code_expiry: Mapped[datetime | None] = mapped_column(nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user = relationship("User", back_populates="beneficiaries")


class Executor(db.Model):
    __tablename__ = "executors"
    __table_args__ = (UniqueConstraint("user_id", "email", name="uq_executor_user_email"),)

    responder_role = ResponderRole.EXECUTOR

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    status: Mapped[ContactStatus] = mapped_column(
        SAEnum(ContactStatus, name="contact_status"),
        nullable=False,
        default=ContactStatus.PENDING,
    )
    invitation_code_hash: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    invitation_code_expiry: Mapped[datetime | None] = mapped_column(nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user = relationship("User", back_populates="executors")


class Will(db.Model):
    __tablename__ = "wills"
    __table_args__ = (Index("ix_wills_user_status", "user_id", "status"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(db.String(200), nullable=False)
    status: Mapped[WillStatus] = mapped_column(
        SAEnum(WillStatus, name="will_status"),
        nullable=False,
        default=WillStatus.DRAFT,
    )
    # status held before a death report, restored if the report is withdrawn
    previous_status: Mapped[str | None] = mapped_column(db.String(30), nullable=True)
    is_released: Mapped[bool] = mapped_column(default=False, nullable=False)
    verification_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="wills")

    @validates("is_released")
    def validate_released(self, _key, value):
        if value and self.status != WillStatus.RELEASED:
            raise ValueError("Only a released will can be marked as released")
        return value


class CheckInResponse(db.Model):
    __tablename__ = "check_in_responses"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_check_in_response_dedupe"),
        Index("ix_check_in_response_user_date", "user_id", "response_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    responder_role: Mapped[ResponderRole] = mapped_column(
        SAEnum(ResponderRole, name="responder_role"),
        nullable=False,
    )
    beneficiary_id: Mapped[int | None] = mapped_column(ForeignKey("beneficiaries.id"), nullable=True)
    executor_id: Mapped[int | None] = mapped_column(ForeignKey("executors.id"), nullable=True)
    responder_email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    is_alive: Mapped[bool] = mapped_column(nullable=False)
    dedupe_key: Mapped[str] = mapped_column(db.String(64), nullable=False)
    response_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user = relationship("User")


class DeathVerificationOtp(db.Model):
    __tablename__ = "death_verification_otps"
    __table_args__ = (Index("ix_death_otp_user_round", "user_id", "round_started_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    verifier_role: Mapped[ResponderRole] = mapped_column(
        SAEnum(ResponderRole, name="responder_role"),
        nullable=False,
    )
    beneficiary_id: Mapped[int | None] = mapped_column(ForeignKey("beneficiaries.id"), nullable=True)
    executor_id: Mapped[int | None] = mapped_column(ForeignKey("executors.id"), nullable=True)
    verifier_email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    code_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    round_started_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    def is_open(self, now: datetime) -> bool:
        return self.confirmed_at is None and self.revoked_at is None and as_utc(self.expires_at) > now


@event.listens_for(CheckInResponse, "before_update")
def check_in_response_before_update(_mapper, _connection, target: CheckInResponse) -> None:
    raise ValueError(f"Check-in response {target.id} is append-only")


@event.listens_for(CheckInResponse, "before_delete")
def check_in_response_before_delete(_mapper, _connection, target: CheckInResponse) -> None:
    raise ValueError(f"Check-in response {target.id} is append-only")


def seed_demo_data(session) -> None:
    now = utcnow()
    owner = User(
        email="demo@willtank.local",
        full_name="Dana Demo",
        password_hash=generate_password_hash("demo12345"),
        is_email_verified=True,
        last_check_in=now - timedelta(days=8),
        next_check_in_due=now - timedelta(days=1),
    )
    current = User(
        email="current@willtank.local",
        full_name="Casey Current",
        password_hash=generate_password_hash("current123"),
        is_email_verified=True,
        last_check_in=now - timedelta(days=1),
        next_check_in_due=now + timedelta(days=6),
    )
    unverified = User(
        email="pending@willtank.local",
        full_name="Pat Pending",
        password_hash=generate_password_hash("pending123"),
        is_email_verified=False,
    )
    session.add_all([owner, current, unverified])
    session.flush()

    session.add_all(
        [
            Beneficiary(
                user_id=owner.id,
                full_name="Bailey Beneficiary",
                email="bailey@example.com",
                status=ContactStatus.VERIFIED,
            ),
            Beneficiary(
                user_id=owner.id,
                full_name="Blake Declined",
                email="blake@example.com",
                status=ContactStatus.DECLINED,
            ),
            Executor(
                user_id=owner.id,
                full_name="Emery Executor",
                email="emery@example.com",
                status=ContactStatus.VERIFIED,
            ),
            Executor(
                user_id=owner.id,
                full_name="Eli Invited",
                email="eli@example.com",
                status=ContactStatus.PENDING,
            ),
            Beneficiary(
                user_id=current.id,
                full_name="Cameron Contact",
                email="cameron@example.com",
                status=ContactStatus.VERIFIED,
            ),
        ]
    )
    session.add_all(
        [
            Will(user_id=owner.id, title="Last will and testament", status=WillStatus.COMPLETED),
            Will(user_id=owner.id, title="Digital assets letter", status=WillStatus.DRAFT),
            Will(user_id=current.id, title="Casey's will", status=WillStatus.COMPLETED),
        ]
    )
    session.commit()
