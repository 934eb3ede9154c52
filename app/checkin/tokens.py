from __future__ import annotations

import time
from dataclasses import dataclass

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.checkin.errors import InvalidCheckInToken
from app.core.models import ResponderRole

TOKEN_SALT = "check-in"


@dataclass(frozen=True)
class CheckInClaim:
    user_id: int
    is_alive: bool
    beneficiary_id: int | None = None
    executor_id: int | None = None
    timestamp: int = 0

    @property
    def responder_role(self) -> ResponderRole:
        if self.beneficiary_id is not None:
            return ResponderRole.BENEFICIARY
        if self.executor_id is not None:
            return ResponderRole.EXECUTOR
        return ResponderRole.USER

    @property
    def contact_id(self) -> int | None:
        return self.beneficiary_id if self.beneficiary_id is not None else self.executor_id


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_check_in_token(
    user_id: int,
    is_alive: bool,
    beneficiary_id: int | None = None,
    executor_id: int | None = None,
) -> str:
    if beneficiary_id is not None and executor_id is not None:
        raise ValueError("A check-in token names at most one contact")
    payload = {
        "userId": user_id,
        "isAlive": bool(is_alive),
        "beneficiaryId": beneficiary_id,
        "executorId": executor_id,
        "timestamp": int(time.time() * 1000),
    }
    return _serializer().dumps(payload)


def _claim_from_payload(payload: object) -> CheckInClaim:
    if not isinstance(payload, dict):
        raise InvalidCheckInToken("Malformed check-in token")
    try:
        return CheckInClaim(
            user_id=int(payload["userId"]),
            is_alive=bool(payload["isAlive"]),
            beneficiary_id=int(payload["beneficiaryId"]) if payload.get("beneficiaryId") is not None else None,
            executor_id=int(payload["executorId"]) if payload.get("executorId") is not None else None,
            timestamp=int(payload.get("timestamp") or 0),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidCheckInToken("Malformed check-in token") from exc


def verify_check_in_token(token: str, max_age: int | None = None) -> CheckInClaim:
    raw = (token or "").strip()
    if not raw:
        raise InvalidCheckInToken("Missing check-in token")
    if max_age is None:
        max_age = current_app.config["CHECK_IN_TOKEN_MAX_AGE_SECONDS"]
    try:
        payload = _serializer().loads(raw, max_age=max_age)
    except SignatureExpired as exc:
        raise InvalidCheckInToken("This check-in link has expired") from exc
    except BadSignature as exc:
        raise InvalidCheckInToken("Invalid check-in token") from exc
    return _claim_from_payload(payload)
