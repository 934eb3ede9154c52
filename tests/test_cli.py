from __future__ import annotations

from app.core.models import CheckInResponse


def test_seed_demo_skips_populated_database(app):
    result = app.test_cli_runner().invoke(args=["seed-demo"])
    assert result.exit_code == 0
    assert "Seed skipped" in result.output


def test_check_in_run_reports_counts(app, outbox):
    result = app.test_cli_runner().invoke(args=["check-in-run"])
    assert result.exit_code == 0
    assert "users=1 sent=3 failed=0 advanced=1" in result.output
    assert len(outbox) == 3
    assert CheckInResponse.query.count() == 0


def test_death_verification_start_reports_errors(app, demo_user):
    runner = app.test_cli_runner()

    unknown = runner.invoke(args=["death-verification-start", "--user-id", "9999"])
    assert unknown.exit_code != 0
    assert "User not found" in unknown.output

    nothing_pending = runner.invoke(args=["death-verification-start", "--user-id", str(demo_user.id)])
    assert nothing_pending.exit_code != 0
    assert "No will is awaiting verification" in nothing_pending.output
