from __future__ import annotations

import logging

from flask import jsonify, render_template, request
from flask_login import current_user

from app.checkin import checkin_bp
from app.checkin.errors import CheckInError, CheckInRunInProgress, InvalidCheckInRequest
from app.checkin.scheduler import send_weekly_check_in_emails
from app.checkin.services import (
    STATE_DEATH_REPORTED,
    add_contact,
    cancel_death_report,
    check_in_status,
    complete_will,
    contact_as_dict,
    create_will,
    list_contacts,
    list_wills,
    parse_check_in_request,
    parse_role,
    record_check_in,
    respond_to_invitation,
    will_as_dict,
)
from app.checkin.verification import confirm_death_verification, restart_death_verification
from app.core.extensions import db
from app.core.models import ResponderRole
from app.core.permissions import require_dev_mode, require_verified_email

logger = logging.getLogger(__name__)


def _payload() -> dict[str, str]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return {k: v for k, v in request.form.items()}


def _owner():
    return current_user._get_current_object()


def _json_error(exc: ValueError):
    return jsonify({"message": str(exc)}), getattr(exc, "status_code", 400)


def _user_id(payload) -> int:
    try:
        return int(payload.get("userId") or 0)
    except (TypeError, ValueError):
        raise InvalidCheckInRequest("Invalid userId") from None


def _confirm(role: ResponderRole):
    try:
        check_in = parse_check_in_request(request.args, role)
        outcome = record_check_in(check_in)
    except CheckInError as exc:
        return render_template("checkin/invalid_link.html", message=str(exc)), exc.status_code
    except Exception:
        db.session.rollback()
        logger.exception("Check-in confirmation failed")
        return render_template("errors/500.html"), 500

    template = "checkin/death_reported.html" if not check_in.alive else "checkin/confirmed.html"
    return render_template(
        template,
        user=outcome.user,
        role=role.value,
        replayed=not outcome.created,
        pending=outcome.state == STATE_DEATH_REPORTED,
    )


@checkin_bp.get("/check-in/confirm")
def confirm_check_in():
    return _confirm(ResponderRole.USER)


@checkin_bp.get("/check-in/<contact_type>/confirm")
def confirm_contact_check_in(contact_type: str):
    try:
        role = parse_role(contact_type)
    except CheckInError as exc:
        return render_template("checkin/invalid_link.html", message=str(exc)), 404
    return _confirm(role)


@checkin_bp.post("/trigger-check-in")
@require_dev_mode
def trigger_check_in():
    try:
        result = send_weekly_check_in_emails()
    except CheckInRunInProgress as exc:
        return jsonify({"message": str(exc)}), 409
    except Exception:
        logger.exception("Manual check-in run failed")
        return jsonify({"message": "Error triggering check-in emails"}), 500
    return jsonify({"message": "Check-in emails triggered successfully", **result.as_dict()})


@checkin_bp.get("/check-in/status")
@require_verified_email
def check_in_status_view():
    return jsonify(check_in_status(_owner()))


@checkin_bp.post("/check-in/cancel-death-report")
@require_verified_email
def cancel_death_report_view():
    restored = cancel_death_report(_owner())
    return jsonify({"message": "Death report withdrawn", "willsRestored": restored})


@checkin_bp.post("/death-verification/confirm")
def death_verification_confirm():
    payload = _payload()
    try:
        user_id = _user_id(payload)
        progress = confirm_death_verification(user_id, payload.get("email", ""), str(payload.get("code", "")))
    except ValueError as exc:
        return _json_error(exc)
    return jsonify(progress.as_dict())


@checkin_bp.post("/death-verification/restart")
def death_verification_restart():
    payload = _payload()
    try:
        user_id = _user_id(payload)
        sent = restart_death_verification(user_id, payload.get("email", ""))
    except ValueError as exc:
        return _json_error(exc)
    return jsonify({"message": "Verification codes sent", "codesSent": sent})


@checkin_bp.get("/contacts/<contact_type>")
@require_verified_email
def contacts_list(contact_type: str):
    try:
        role = parse_role(contact_type)
    except ValueError as exc:
        return _json_error(exc)
    return jsonify([contact_as_dict(c) for c in list_contacts(_owner(), role)])


@checkin_bp.post("/contacts/<contact_type>")
@require_verified_email
def contacts_add(contact_type: str):
    try:
        role = parse_role(contact_type)
        contact = add_contact(_owner(), role, _payload())
    except ValueError as exc:
        return _json_error(exc)
    return jsonify(contact_as_dict(contact)), 201


@checkin_bp.post("/contacts/<contact_type>/<int:contact_id>/respond")
def contacts_respond(contact_type: str, contact_id: int):
    payload = _payload()
    accept = str(payload.get("accept", "true")).strip().lower() in {"1", "true", "yes"}
    try:
        role = parse_role(contact_type)
        contact = respond_to_invitation(role, contact_id, str(payload.get("code", "")), accept)
    except ValueError as exc:
        return _json_error(exc)
    return jsonify(contact_as_dict(contact))


@checkin_bp.get("/wills")
@require_verified_email
def wills_list():
    return jsonify([will_as_dict(w) for w in list_wills(_owner())])


@checkin_bp.post("/wills")
@require_verified_email
def wills_create():
    try:
        will = create_will(_owner(), _payload())
    except ValueError as exc:
        return _json_error(exc)
    return jsonify(will_as_dict(will)), 201


@checkin_bp.post("/wills/<int:will_id>/complete")
@require_verified_email
def wills_complete(will_id: int):
    try:
        will = complete_will(_owner(), will_id)
    except ValueError as exc:
        return _json_error(exc)
    return jsonify(will_as_dict(will))
