# pyright: reportMissingImports=false

from __future__ import annotations

import json

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from accessguard.core.security import is_well_formed_secret, verify_api_secret
from accessguard.db.models import ApiCredential, SecurityEvent
from accessguard.scripts.issue_credential import bootstrap_credential, main


def test_bootstrap_credential_defaults_to_admin_permission(db: Session) -> None:
    cred, secret = bootstrap_credential(
        db,
        owner_id="ops",
        name="bootstrap",
        permissions=None,
        ip_allowlist=None,
        expires_in_days=None,
        environment="live",
    )
    db.commit()

    assert is_well_formed_secret(secret)
    assert json.loads(cred.permissions_json) == ["protection.admin"]
    assert json.loads(cred.ip_allowlist_json) == []
    assert cred.expires_at is None


def test_bootstrap_credential_rejects_non_positive_expiry(db: Session) -> None:
    with pytest.raises(ValueError):
        _ = bootstrap_credential(
            db,
            owner_id="ops",
            name="bootstrap",
            permissions=None,
            ip_allowlist=None,
            expires_in_days=0,
            environment="live",
        )


def test_main_prints_secret_once(db: Session, capsys: pytest.CaptureFixture[str]) -> None:
    main(
        [
            "--owner-id",
            "ops",
            "--permission",
            "login_guard.*",
            "--permission",
            "credentials.read",
            "--allow-ip",
            "192.0.2.10",
            "--expires-in-days",
            "30",
            "--environment",
            "test",
        ]
    )

    lines = capsys.readouterr().out.splitlines()
    secret_lines = [ln for ln in lines if ln.startswith("secret=")]
    assert len(secret_lines) == 1
    secret = secret_lines[0].removeprefix("secret=")
    assert secret.startswith("iso_test_sk_")

    cred = db.execute(select(ApiCredential)).scalar_one()
    assert verify_api_secret(secret, cred.secret_hash)
    assert json.loads(cred.permissions_json) == ["credentials.read", "login_guard.*"]
    assert json.loads(cred.ip_allowlist_json) == ["192.0.2.10"]
    assert cred.expires_at is not None

    event = db.execute(select(SecurityEvent)).scalar_one()
    assert event.event_type == "credential.issued"


def test_main_fails_cleanly_on_bad_input() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--owner-id", "ops", "--expires-in-days", "-1"])
    assert "issue_credential failed" in str(excinfo.value)
