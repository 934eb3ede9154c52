from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.checkin.emails import EmailMessage, deliver, invitation_email
from app.checkin.errors import InvalidCheckInRequest, InvalidCheckInToken, UnknownCheckInSubject
from app.checkin.tokens import verify_check_in_token
from app.checkin.verification import (
    deliver_all,
    generate_code,
    has_open_round,
    issue_verifier_codes,
    revoke_open_codes,
)
from app.core.extensions import db
from app.core.models import (
    Beneficiary,
    CheckInResponse,
    ContactStatus,
    Executor,
    ResponderRole,
    User,
    Will,
    WillStatus,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

STATE_ALIVE_CONFIRMED = "ALIVE_CONFIRMED"
STATE_DEATH_REPORTED = "DEATH_REPORTED"
STATE_VERIFIED_DECEASED = "VERIFIED_DECEASED"

CONTACT_MODELS: dict[ResponderRole, type[Beneficiary] | type[Executor]] = {
    ResponderRole.BENEFICIARY: Beneficiary,
    ResponderRole.EXECUTOR: Executor,
}
CONTACT_ID_PARAMS: dict[ResponderRole, str] = {
    ResponderRole.BENEFICIARY: "beneficiaryId",
    ResponderRole.EXECUTOR: "executorId",
}
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class CheckInRequest:
    user_id: int
    alive: bool
    token: str
    role: ResponderRole = ResponderRole.USER
    contact_id: int | None = None


@dataclass
class CheckInOutcome:
    user: User
    response: CheckInResponse
    created: bool
    wills_flagged: int = 0
    verifiers_notified: int = 0

    @property
    def state(self) -> str:
        return check_in_state(self.user.id)


def parse_role(value: str) -> ResponderRole:
    raw = (value or "").strip().lower()
    if raw not in {ResponderRole.BENEFICIARY.value, ResponderRole.EXECUTOR.value}:
        raise InvalidCheckInRequest("Contact type must be beneficiary or executor")
    return ResponderRole(raw)


def _parse_int(value: str | None, field_name: str) -> int:
    raw = (value or "").strip()
    if not raw:
        raise InvalidCheckInRequest(f"Missing {field_name}")
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidCheckInRequest(f"Invalid {field_name}") from exc


def parse_check_in_request(args, role: ResponderRole = ResponderRole.USER) -> CheckInRequest:
    """Validate the query string of a confirmation link."""
    user_id = _parse_int(args.get("userId"), "userId")
    alive_raw = (args.get("alive") or "").strip().lower()
    if not alive_raw:
        raise InvalidCheckInRequest("Missing alive")
    if alive_raw not in {"true", "false"}:
        raise InvalidCheckInRequest("alive must be true or false")
    token = (args.get("token") or "").strip()
    if not token:
        raise InvalidCheckInRequest("Missing token")
    contact_id = None
    if role != ResponderRole.USER:
        contact_id = _parse_int(args.get(CONTACT_ID_PARAMS[role]), CONTACT_ID_PARAMS[role])
    return CheckInRequest(
        user_id=user_id,
        alive=alive_raw == "true",
        token=token,
        role=role,
        contact_id=contact_id,
    )


def check_in_state(user_id: int) -> str:
    statuses = {w.status for w in Will.query.filter_by(user_id=user_id).all()}
    if WillStatus.RELEASED in statuses:
        return STATE_VERIFIED_DECEASED
    if WillStatus.PENDING_VERIFICATION in statuses:
        return STATE_DEATH_REPORTED
    return STATE_ALIVE_CONFIRMED


def dedupe_key(request: CheckInRequest) -> str:
    material = f"{request.user_id}:{request.role.value}:{request.contact_id or ''}:{request.token}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def _responder(user: User, request: CheckInRequest) -> Beneficiary | Executor | None:
    if request.role == ResponderRole.USER:
        return None
    model = CONTACT_MODELS[request.role]
    contact = model.query.filter_by(id=request.contact_id, user_id=user.id).first()
    if contact is None:
        raise UnknownCheckInSubject(f"{request.role.value.capitalize()} not found")
    if contact.status != ContactStatus.VERIFIED:
        raise InvalidCheckInRequest(f"{request.role.value.capitalize()} is not verified")
    return contact


def _check_token(request: CheckInRequest) -> None:
    if not current_app.config["CHECK_IN_REQUIRE_SIGNED_TOKEN"]:
        return
    claim = verify_check_in_token(request.token)
    if (
        claim.user_id != request.user_id
        or claim.is_alive != request.alive
        or claim.responder_role != request.role
        or claim.contact_id != request.contact_id
    ):
        raise InvalidCheckInToken("Check-in token does not match this link")


def advance_check_in_clock(user: User, now: datetime) -> None:
    user.last_check_in = now
    user.next_check_in_due = now + timedelta(days=current_app.config["CHECK_IN_PERIOD_DAYS"])
    db.session.add(user)


def flag_wills_pending_verification(user: User, now: datetime) -> int:
    wills = (
        Will.query.filter_by(user_id=user.id)
        .filter(Will.status.in_([WillStatus.DRAFT, WillStatus.COMPLETED]))
        .all()
    )
    for will in wills:
        will.previous_status = will.status.value
        will.status = WillStatus.PENDING_VERIFICATION
        will.verification_started_at = now
        db.session.add(will)
    return len(wills)


def record_check_in(request: CheckInRequest, now: datetime | None = None) -> CheckInOutcome:
    """
    Store one attestation and apply its state change.

    Replays of the same link are answered with the stored response and do
    not write anything. The response row, the clock update and the will
    transition commit together or not at all.
    """
    now = now or utcnow()
    user = db.session.get(User, request.user_id)
    if user is None:
        raise UnknownCheckInSubject("User not found")
    contact = _responder(user, request)
    _check_token(request)

    key = dedupe_key(request)
    existing = CheckInResponse.query.filter_by(dedupe_key=key).first()
    if existing is not None:
        logger.info("Replayed check-in link for user %s ignored (response %s)", user.id, existing.id)
        return CheckInOutcome(user=user, response=existing, created=False)

    response = CheckInResponse(
        user_id=user.id,
        responder_role=request.role,
        beneficiary_id=contact.id if request.role == ResponderRole.BENEFICIARY else None,
        executor_id=contact.id if request.role == ResponderRole.EXECUTOR else None,
        responder_email=contact.email if contact is not None else user.email,
        is_alive=request.alive,
        dedupe_key=key,
        response_date=now,
    )
    flagged = 0
    messages: list[EmailMessage] = []
    try:
        db.session.add(response)
        if request.alive:
            advance_check_in_clock(user, now)
        else:
            flagged = flag_wills_pending_verification(user, now)
            if not has_open_round(user.id, now) and Will.query.filter_by(
                user_id=user.id, status=WillStatus.PENDING_VERIFICATION
            ).count():
                messages = issue_verifier_codes(user, now)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = CheckInResponse.query.filter_by(dedupe_key=key).first()
        if existing is None:
            raise
        return CheckInOutcome(user=user, response=existing, created=False)
    except SQLAlchemyError:
        db.session.rollback()
        raise

    if request.alive:
        logger.info("User %s confirmed alive by %s", user.id, request.role.value)
    else:
        logger.warning(
            "Death of user %s reported by %s; %s wills now pending verification",
            user.id,
            request.role.value,
            flagged,
        )
    notified = deliver_all(messages) if messages else 0
    return CheckInOutcome(
        user=user,
        response=response,
        created=True,
        wills_flagged=flagged,
        verifiers_notified=notified,
    )


def cancel_death_report(user: User, now: datetime | None = None) -> int:
    now = now or utcnow()
    wills = Will.query.filter_by(user_id=user.id, status=WillStatus.PENDING_VERIFICATION).all()
    for will in wills:
        will.status = WillStatus(will.previous_status) if will.previous_status else WillStatus.COMPLETED
        will.previous_status = None
        will.verification_started_at = None
        db.session.add(will)
    revoke_open_codes(user.id, now)
    advance_check_in_clock(user, now)
    db.session.commit()
    logger.info("User %s withdrew a death report; %s wills restored", user.id, len(wills))
    return len(wills)


def check_in_status(user: User, limit: int = 10) -> dict[str, object]:
    responses = (
        CheckInResponse.query.filter_by(user_id=user.id)
        .order_by(CheckInResponse.response_date.desc(), CheckInResponse.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "lastCheckIn": _iso(user.last_check_in),
        "nextCheckInDue": _iso(user.next_check_in_due),
        "state": check_in_state(user.id),
        "responses": [
            {
                "id": r.id,
                "role": r.responder_role.value,
                "email": r.responder_email,
                "isAlive": r.is_alive,
                "responseDate": _iso(r.response_date),
            }
            for r in responses
        ],
    }


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _validate_email(value: str) -> str:
    email = (value or "").strip().lower()
    if not email:
        raise ValueError("Email is required")
    if not email.isascii() or not EMAIL_RE.match(email):
        raise ValueError("Invalid email")
    return email


def contact_as_dict(contact: Beneficiary | Executor) -> dict[str, object]:
    return {
        "id": contact.id,
        "type": contact.responder_role.value,
        "fullName": contact.full_name,
        "email": contact.email,
        "status": contact.status.value,
    }


def list_contacts(user: User, role: ResponderRole) -> list[Beneficiary | Executor]:
    model = CONTACT_MODELS[role]
    return model.query.filter_by(user_id=user.id).order_by(model.id.asc()).all()


def add_contact(user: User, role: ResponderRole, payload: dict[str, str]) -> Beneficiary | Executor:
    model = CONTACT_MODELS[role]
    full_name = (payload.get("fullName") or payload.get("full_name") or "").strip()
    if not full_name:
        raise ValueError("Full name is required")
    email = _validate_email(payload.get("email") or "")
    if email == user.email.lower():
        raise ValueError("You cannot name yourself as a contact")
    if model.query.filter_by(user_id=user.id, email=email).first():
        raise ValueError(f"This {role.value} has already been added")

    code = generate_code()
    now = utcnow()
    contact = model(
        user_id=user.id,
        full_name=full_name,
        email=email,
        status=ContactStatus.PENDING,
        invitation_code_hash=generate_password_hash(code),
        invitation_code_expiry=now + timedelta(minutes=current_app.config["INVITATION_CODE_TTL_MINUTES"]),
    )
    db.session.add(contact)
    db.session.commit()

    result = deliver(invitation_email(email, user.display_name, role, contact.id, code))
    if not result.success:
        logger.error("Invitation email to %s failed: %s", email, result.details)
    return contact


def respond_to_invitation(
    role: ResponderRole,
    contact_id: int,
    code: str,
    accept: bool,
    now: datetime | None = None,
) -> Beneficiary | Executor:
    now = now or utcnow()
    contact = db.session.get(CONTACT_MODELS[role], contact_id)
    if contact is None:
        raise UnknownCheckInSubject(f"{role.value.capitalize()} not found")
    if contact.status != ContactStatus.PENDING or not contact.invitation_code_hash:
        raise ValueError("This invitation has already been answered")
    expiry = as_utc(contact.invitation_code_expiry)
    if expiry is None or expiry <= now:
        raise ValueError("Invitation code expired")
    if not check_password_hash(contact.invitation_code_hash, (code or "").strip()):
        raise ValueError("Invalid invitation code")
    contact.status = ContactStatus.VERIFIED if accept else ContactStatus.DECLINED
    contact.responded_at = now
    contact.invitation_code_hash = None
    contact.invitation_code_expiry = None
    db.session.add(contact)
    db.session.commit()
    logger.info("%s %s %s the invitation", role.value.capitalize(), contact.id, contact.status.value)
    return contact


def will_as_dict(will: Will) -> dict[str, object]:
    return {
        "id": will.id,
        "title": will.title,
        "status": will.status.value,
        "isReleased": will.is_released,
        "releasedAt": _iso(will.released_at),
    }


def list_wills(user: User) -> list[Will]:
    return Will.query.filter_by(user_id=user.id).order_by(Will.id.asc()).all()


def create_will(user: User, payload: dict[str, str]) -> Will:
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValueError("Title is required")
    will = Will(user_id=user.id, title=title, status=WillStatus.DRAFT)
    db.session.add(will)
    db.session.commit()
    return will


def complete_will(user: User, will_id: int) -> Will:
    will = Will.query.filter_by(id=will_id, user_id=user.id).first()
    if will is None:
        raise UnknownCheckInSubject("Will not found")
    if will.status != WillStatus.DRAFT:
        raise ValueError(f"Only draft wills can be completed (current: {will.status.value})")
    will.status = WillStatus.COMPLETED
    db.session.add(will)
    db.session.commit()
    return will
