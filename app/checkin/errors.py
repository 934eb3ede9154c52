from __future__ import annotations


class CheckInError(ValueError):
    status_code = 400


class InvalidCheckInRequest(CheckInError):
    pass


class InvalidCheckInToken(InvalidCheckInRequest):
    pass


class UnknownCheckInSubject(CheckInError):
    status_code = 404


class DeathVerificationError(CheckInError):
    pass


class CheckInRunInProgress(RuntimeError):
    pass
