# pyright: reportMissingImports=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, generate_latest


_BRUTE_FORCE_DECISIONS = Counter(
    "accessguard_brute_force_decisions_total",
    "Brute-force checks by outcome (clear, locked, denied, safe, threshold).",
    labelnames=("outcome",),
)
_LOCKOUTS_CREATED = Counter(
    "accessguard_lockouts_created_total",
    "Lockouts created after the failure threshold was crossed.",
)
_PROTECTION_STORE_ERRORS = Counter(
    "accessguard_store_errors_total",
    "Store failures resolved by the fail-open/fail-closed policy.",
    labelnames=("component",),
)
_API_AUTH_RESULTS = Counter(
    "accessguard_api_auth_results_total",
    "API credential authentication outcomes by audit reason.",
    labelnames=("result", "reason"),
)


def record_brute_force_decision(outcome: str) -> None:
    _BRUTE_FORCE_DECISIONS.labels(outcome=outcome).inc()


def record_lockout_created() -> None:
    _LOCKOUTS_CREATED.inc()


def record_store_error(component: str) -> None:
    _PROTECTION_STORE_ERRORS.labels(component=component).inc()


def record_api_auth(*, success: bool, reason: str | None) -> None:
    _API_AUTH_RESULTS.labels(
        result="success" if success else "failure",
        reason=reason or "",
    ).inc()


def metrics_payload() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
