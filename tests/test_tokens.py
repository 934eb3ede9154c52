from __future__ import annotations

import pytest
from itsdangerous import URLSafeTimedSerializer

from app.checkin.errors import InvalidCheckInToken
from app.checkin.tokens import TOKEN_SALT, issue_check_in_token, verify_check_in_token
from app.core.models import ResponderRole


def test_user_token_round_trip(app):
    with app.app_context():
        claim = verify_check_in_token(issue_check_in_token(7, True))
        assert claim.user_id == 7
        assert claim.is_alive is True
        assert claim.responder_role == ResponderRole.USER
        assert claim.contact_id is None
        assert claim.timestamp > 0


def test_contact_tokens_name_their_contact(app):
    with app.app_context():
        beneficiary = verify_check_in_token(issue_check_in_token(3, False, beneficiary_id=11))
        executor = verify_check_in_token(issue_check_in_token(3, True, executor_id=12))

        assert beneficiary.responder_role == ResponderRole.BENEFICIARY
        assert beneficiary.contact_id == 11
        assert beneficiary.is_alive is False
        assert executor.responder_role == ResponderRole.EXECUTOR
        assert executor.contact_id == 12


def test_token_cannot_name_two_contacts(app):
    with app.app_context():
        with pytest.raises(ValueError):
            issue_check_in_token(1, True, beneficiary_id=1, executor_id=2)


def test_tampered_token_is_rejected(app):
    with app.app_context():
        token = issue_check_in_token(1, True)
        tampered = ("x" if token[0] != "x" else "y") + token[1:]
        with pytest.raises(InvalidCheckInToken, match="Invalid check-in token"):
            verify_check_in_token(tampered)


def test_token_signed_with_another_key_is_rejected(app):
    with app.app_context():
        forged = URLSafeTimedSerializer("not-the-secret", salt=TOKEN_SALT).dumps(
            {"userId": 1, "isAlive": True, "beneficiaryId": None, "executorId": None, "timestamp": 1}
        )
        with pytest.raises(InvalidCheckInToken):
            verify_check_in_token(forged)


def test_expired_token_is_rejected(app):
    with app.app_context():
        token = issue_check_in_token(1, True)
        with pytest.raises(InvalidCheckInToken, match="expired"):
            verify_check_in_token(token, max_age=-1)


def test_empty_token_is_rejected(app):
    with app.app_context():
        with pytest.raises(InvalidCheckInToken, match="Missing"):
            verify_check_in_token("   ")


def test_malformed_payload_is_rejected(app):
    with app.app_context():
        signed_list = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt=TOKEN_SALT).dumps([1, True])
        signed_partial = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt=TOKEN_SALT).dumps({"isAlive": True})

        with pytest.raises(InvalidCheckInToken, match="Malformed"):
            verify_check_in_token(signed_list)
        with pytest.raises(InvalidCheckInToken, match="Malformed"):
            verify_check_in_token(signed_partial)
