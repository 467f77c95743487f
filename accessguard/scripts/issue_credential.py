from __future__ import annotations

import argparse
from datetime import timedelta
from typing import cast

from sqlalchemy.orm import Session

from accessguard.core.clock import utcnow
from accessguard.db.models import ApiCredential
from accessguard.db.session import SessionLocal
from accessguard.services.audit import AuditLogger
from accessguard.services.credentials import issue_credential


DEFAULT_PERMISSIONS = ("protection.admin",)


def bootstrap_credential(
    db: Session,
    *,
    owner_id: str,
    name: str,
    permissions: list[str] | None,
    ip_allowlist: list[str] | None,
    expires_in_days: int | None,
    environment: str,
) -> tuple[ApiCredential, str]:
    if expires_in_days is not None and expires_in_days <= 0:
        raise ValueError("--expires-in-days must be a positive integer")

    expires_at = None
    if expires_in_days is not None:
        expires_at = utcnow() + timedelta(days=expires_in_days)

    return issue_credential(
        db,
        owner_id=owner_id,
        name=name,
        permissions=permissions or list(DEFAULT_PERMISSIONS),
        ip_allowlist=ip_allowlist or [],
        expires_at=expires_at,
        environment=environment,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Issue an API credential. The secret is printed once; only its hash is stored."
        )
    )
    _ = parser.add_argument("--owner-id", required=True, help="Owner id the credential acts as")
    _ = parser.add_argument("--name", default="bootstrap", help="Display name (default: bootstrap)")
    _ = parser.add_argument(
        "--permission",
        dest="permissions",
        action="append",
        default=None,
        help="Permission to grant; repeatable (default: protection.admin).",
    )
    _ = parser.add_argument(
        "--allow-ip",
        dest="ip_allowlist",
        action="append",
        default=None,
        help="Restrict the credential to this client IP; repeatable (default: any IP).",
    )
    _ = parser.add_argument(
        "--expires-in-days",
        type=int,
        default=None,
        help="Expire the credential after N days (default: never).",
    )
    _ = parser.add_argument(
        "--environment",
        choices=("live", "test"),
        default="live",
        help="Secret environment prefix (default: live).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    owner_id = cast(str, args.owner_id)
    name = cast(str, args.name)
    permissions = cast(list[str] | None, args.permissions)
    ip_allowlist = cast(list[str] | None, args.ip_allowlist)
    expires_in_days = cast(int | None, args.expires_in_days)
    environment = cast(str, args.environment)

    db = SessionLocal()
    try:
        cred, secret = bootstrap_credential(
            db,
            owner_id=owner_id,
            name=name,
            permissions=permissions,
            ip_allowlist=ip_allowlist,
            expires_in_days=expires_in_days,
            environment=environment,
        )
        db.commit()
        AuditLogger(db).record_security_event(
            "credential.issued",
            data={"actor": "cli", "credential_id": cred.id, "owner_id": cred.owner_id},
        )
        print(f"action=created credential_id={cred.id} owner_id={cred.owner_id} name={cred.name}")
        print("IMPORTANT: secret printed once; please save it now")
        print(f"secret={secret}")
    except Exception as exc:
        db.rollback()
        raise SystemExit(f"issue_credential failed: {type(exc).__name__}: {exc}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
