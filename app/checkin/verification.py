from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from werkzeug.security import check_password_hash, generate_password_hash

from app.checkin.emails import EmailMessage, death_verification_email, deliver
from app.checkin.errors import DeathVerificationError, UnknownCheckInSubject
from app.core.extensions import db
from app.core.models import (
    Beneficiary,
    DeathVerificationOtp,
    Executor,
    ResponderRole,
    User,
    Will,
    WillStatus,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_VERIFIERS = 5


@dataclass
class VerificationProgress:
    confirmed: int
    required: int
    released: bool = False

    def as_dict(self) -> dict[str, object]:
        return {"confirmed": self.confirmed, "required": self.required, "released": self.released}


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def select_verifiers(user: User) -> list[Beneficiary | Executor]:
    return user.verified_contacts()[:MAX_VERIFIERS]


def required_confirmations(verifier_count: int) -> int:
    return min(current_app.config["DEATH_VERIFICATION_QUORUM"], verifier_count)


def pending_wills(user_id: int) -> list[Will]:
    return (
        Will.query.filter_by(user_id=user_id, status=WillStatus.PENDING_VERIFICATION)
        .order_by(Will.id.asc())
        .all()
    )


def current_round(user_id: int) -> list[DeathVerificationOtp]:
    latest = (
        DeathVerificationOtp.query.filter_by(user_id=user_id)
        .order_by(DeathVerificationOtp.round_started_at.desc(), DeathVerificationOtp.id.desc())
        .first()
    )
    if latest is None:
        return []
    return (
        DeathVerificationOtp.query.filter_by(user_id=user_id, round_started_at=latest.round_started_at)
        .order_by(DeathVerificationOtp.id.asc())
        .all()
    )


def has_open_round(user_id: int, now: datetime) -> bool:
    return any(row.is_open(now) for row in current_round(user_id))


def revoke_open_codes(user_id: int, now: datetime) -> int:
    rows = DeathVerificationOtp.query.filter_by(user_id=user_id, confirmed_at=None, revoked_at=None).all()
    for row in rows:
        row.revoked_at = now
        db.session.add(row)
    return len(rows)


def issue_verifier_codes(user: User, now: datetime) -> list[EmailMessage]:
    """Open a new verification round; the caller commits, then delivers."""
    verifiers = select_verifiers(user)
    if not verifiers:
        logger.warning("User %s has no verified contacts; wills stay pending verification", user.id)
        return []
    revoke_open_codes(user.id, now)
    expires_at = now + timedelta(minutes=current_app.config["DEATH_VERIFICATION_WINDOW_MINUTES"])
    required = required_confirmations(len(verifiers))
    messages: list[EmailMessage] = []
    for contact in verifiers:
        code = generate_code()
        db.session.add(
            DeathVerificationOtp(
                user_id=user.id,
                verifier_role=contact.responder_role,
                beneficiary_id=contact.id if contact.responder_role == ResponderRole.BENEFICIARY else None,
                executor_id=contact.id if contact.responder_role == ResponderRole.EXECUTOR else None,
                verifier_email=contact.email,
                code_hash=generate_password_hash(code),
                round_started_at=now,
                expires_at=expires_at,
            )
        )
        messages.append(death_verification_email(contact.email, user.id, user.display_name, code, required))
    logger.info("Death verification round opened for user %s (%s verifiers, %s required)", user.id, len(verifiers), required)
    return messages


def deliver_all(messages: list[EmailMessage]) -> int:
    delivered = 0
    for message in messages:
        result = deliver(message)
        if result.success:
            delivered += 1
        else:
            logger.error("Death verification email to %s failed: %s", message.to, result.details)
    return delivered


def _user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise UnknownCheckInSubject("User not found")
    return user


def start_death_verification(user_id: int, now: datetime | None = None) -> int:
    now = now or utcnow()
    user = _user_or_404(user_id)
    if not pending_wills(user.id):
        raise DeathVerificationError("No will is awaiting verification")
    messages = issue_verifier_codes(user, now)
    db.session.commit()
    return deliver_all(messages)


def restart_death_verification(user_id: int, email: str, now: datetime | None = None) -> int:
    user = _user_or_404(user_id)
    requester = (email or "").strip().lower()
    if requester not in {c.email.lower() for c in select_verifiers(user)}:
        raise DeathVerificationError("Only a trusted contact can restart verification")
    return start_death_verification(user.id, now)


def release_wills(user: User, now: datetime) -> int:
    wills = pending_wills(user.id)
    for will in wills:
        will.status = WillStatus.RELEASED
        will.is_released = True
        will.released_at = now
        db.session.add(will)
    logger.warning("Released %s wills of user %s after verifier quorum", len(wills), user.id)
    return len(wills)


def confirm_death_verification(
    user_id: int,
    email: str,
    code: str,
    now: datetime | None = None,
) -> VerificationProgress:
    now = now or utcnow()
    user = _user_or_404(user_id)
    if not pending_wills(user.id):
        raise DeathVerificationError("No will is awaiting verification")
    round_rows = [row for row in current_round(user.id) if row.revoked_at is None]
    address = (email or "").strip().lower()
    row = next((r for r in round_rows if r.verifier_email.lower() == address), None)
    if row is None:
        raise DeathVerificationError("No verification code was issued to this contact")
    required = required_confirmations(len(round_rows))

    if row.confirmed_at is None:
        if as_utc(row.expires_at) <= now:
            raise DeathVerificationError("Verification code expired")
        if not check_password_hash(row.code_hash, (code or "").strip()):
            raise DeathVerificationError("Invalid verification code")
        row.confirmed_at = now
        db.session.add(row)

    confirmed = sum(1 for r in round_rows if r.confirmed_at is not None)
    progress = VerificationProgress(confirmed=confirmed, required=required)
    if confirmed >= required:
        release_wills(user, now)
        progress.released = True
    db.session.commit()
    return progress
