from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from urllib.parse import urlencode

from flask import current_app, render_template

from app.checkin.tokens import issue_check_in_token
from app.core.mailer import EmailResult, send_email
from app.core.models import ResponderRole


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str


def _client_url(path: str, params: dict[str, object] | None = None) -> str:
    base = (current_app.config.get("CLIENT_URL") or "").rstrip("/")
    query = f"?{urlencode(params)}" if params else ""
    return f"{base}{path}{query}"


def _render(template: str, **context) -> str:
    return render_template(template, year=date.today().year, **context)


def check_in_links(user_id: int, role: ResponderRole = ResponderRole.USER, contact_id: int | None = None) -> tuple[str, str]:
    """Return the (confirm alive, report death) URLs for one recipient."""
    links = []
    for alive in (True, False):
        params: dict[str, object] = {"userId": user_id}
        if role == ResponderRole.BENEFICIARY:
            params["beneficiaryId"] = contact_id
            token = issue_check_in_token(user_id, alive, beneficiary_id=contact_id)
            path = "/api/check-in/beneficiary/confirm"
        elif role == ResponderRole.EXECUTOR:
            params["executorId"] = contact_id
            token = issue_check_in_token(user_id, alive, executor_id=contact_id)
            path = "/api/check-in/executor/confirm"
        else:
            token = issue_check_in_token(user_id, alive)
            path = "/api/check-in/confirm"
        params["alive"] = "true" if alive else "false"
        params["token"] = token
        links.append(_client_url(path, params))
    return links[0], links[1]


def verification_email(to: str, code: str) -> EmailMessage:
    minutes = current_app.config["VERIFICATION_CODE_TTL_MINUTES"]
    return EmailMessage(
        to=to,
        subject="Verify Your WillTank Account",
        html=_render("emails/verification.html", code=code, minutes=minutes),
    )


def password_reset_email(to: str, token: str) -> EmailMessage:
    reset_url = _client_url("/auth/reset-password", {"token": token})
    minutes = current_app.config["PASSWORD_RESET_TTL_MINUTES"]
    return EmailMessage(
        to=to,
        subject="Reset Your WillTank Password",
        html=_render("emails/password_reset.html", reset_url=reset_url, minutes=minutes),
    )


def invitation_email(
    to: str,
    inviter_name: str,
    role: ResponderRole,
    contact_id: int,
    code: str,
) -> EmailMessage:
    respond_url = _client_url("/invitation", {"type": role.value, "contactId": contact_id})
    minutes = current_app.config["INVITATION_CODE_TTL_MINUTES"]
    return EmailMessage(
        to=to,
        subject=f"{inviter_name} named you as {role.value} on WillTank",
        html=_render(
            "emails/invitation.html",
            inviter_name=inviter_name,
            role=role.value,
            contact_id=contact_id,
            respond_url=respond_url,
            code=code,
            minutes=minutes,
        ),
    )


def weekly_check_in_email(
    to: str,
    subject_name: str,
    confirm_alive_url: str,
    report_death_url: str,
    for_contact: bool = False,
) -> EmailMessage:
    subject = f"Check-in for {subject_name}'s Will on WillTank" if for_contact else "WillTank Weekly Check-in"
    return EmailMessage(
        to=to,
        subject=subject,
        html=_render(
            "emails/weekly_check_in.html",
            subject_name=subject_name,
            confirm_alive_url=confirm_alive_url,
            report_death_url=report_death_url,
        ),
    )


def death_verification_email(
    to: str,
    user_id: int,
    deceased_name: str,
    code: str,
    required: int,
) -> EmailMessage:
    portal_url = _client_url("/death-verification", {"userId": user_id, "email": to})
    minutes = current_app.config["DEATH_VERIFICATION_WINDOW_MINUTES"]
    return EmailMessage(
        to=to,
        subject="Important: Will Access Verification",
        html=_render(
            "emails/death_verification.html",
            deceased_name=deceased_name,
            portal_url=portal_url,
            code=code,
            minutes=minutes,
            required=required,
        ),
    )


def deliver(message: EmailMessage) -> EmailResult:
    return send_email(message.to, message.subject, message.html)
