from __future__ import annotations

import os
from functools import wraps

from flask import Flask, abort, current_app, jsonify
from flask_login import current_user


def is_dev_mode(app: Flask) -> bool:
    if app.debug:
        return True
    flask_env = (os.getenv("FLASK_ENV") or "").strip().lower()
    app_env = (app.config.get("APP_ENV") or os.getenv("APP_ENV") or "").strip().lower()
    return flask_env == "development" or app_env in {"dev", "development"}


def require_verified_email(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"message": "Not authenticated"}), 401
        if not current_user.is_email_verified:
            return jsonify({"message": "Please verify your email first"}), 403
        return fn(*args, **kwargs)

    return wrapper


def require_dev_mode(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not is_dev_mode(current_app):
            abort(404)
        return fn(*args, **kwargs)

    return wrapper
