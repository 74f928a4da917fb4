"""Operational diagnostics for local config/runtime readiness."""

from __future__ import annotations

from dataclasses import dataclass
import ipaddress
import socket
from typing import Any

from autodb.config.schema import AppConfig
from autodb.core.provisioning import SchemaProvisioner
from autodb.errors import ProvisioningError


_DEFAULT_ADMIN_CREDENTIALS = {("root", "test"), ("root", ""), ("root", "root")}


@dataclass(slots=True)
class DoctorCheck:
    name: str
    ok: bool
    detail: str


def run_diagnostics(
    config: AppConfig,
    *,
    check_upstream: bool = False,
    provisioner: SchemaProvisioner | None = None,
) -> dict[str, Any]:
    checks: list[DoctorCheck] = []

    loop_ok, loop_detail = _listen_address_check(config)
    checks.append(DoctorCheck(name="listen_address", ok=loop_ok, detail=loop_detail))

    credentials_ok, credentials_detail = _admin_credentials_check(config)
    checks.append(DoctorCheck(name="admin_credentials", ok=credentials_ok, detail=credentials_detail))

    proxy = config.proxy
    timeouts_ok = proxy.upstream_reply_timeout_seconds <= proxy.handshake_timeout_seconds
    checks.append(
        DoctorCheck(
            name="timeouts",
            ok=timeouts_ok,
            detail=(
                f"handshake={proxy.handshake_timeout_seconds}s upstream_reply={proxy.upstream_reply_timeout_seconds}s"
                if timeouts_ok
                else "upstream_reply_timeout_seconds exceeds handshake_timeout_seconds"
            ),
        )
    )

    if check_upstream:
        gate = provisioner or SchemaProvisioner(config.upstream, config.admin)
        try:
            gate.probe()
        except ProvisioningError as exc:
            checks.append(DoctorCheck(name="upstream_liveness", ok=False, detail=str(exc)))
        else:
            checks.append(
                DoctorCheck(
                    name="upstream_liveness",
                    ok=True,
                    detail=f"admin connection to {config.upstream.address} succeeded",
                )
            )

    return {
        "ok": all(item.ok for item in checks),
        "checks": [
            {
                "name": item.name,
                "ok": item.ok,
                "detail": item.detail,
            }
            for item in checks
        ],
    }


def _listen_address_check(config: AppConfig) -> tuple[bool, str]:
    if config.proxy.listen_port != config.upstream.port:
        return (True, f"proxy port {config.proxy.listen_port} differs from upstream port")
    if _is_local_host(config.upstream.host):
        return (False, "proxy would listen on the upstream's own local port and relay to itself")
    return (True, "upstream shares the listen port but runs on another host")


def _admin_credentials_check(config: AppConfig) -> tuple[bool, str]:
    credentials = (config.admin.user, config.admin.password)
    if credentials not in _DEFAULT_ADMIN_CREDENTIALS:
        return (True, "admin credentials are not a known default")
    if config.environment == "development":
        return (True, "known default admin credentials allowed in development profile")
    return (False, f"known default admin credentials in use for environment '{config.environment}'")


def _is_local_host(host: str) -> bool:
    normalized = host.strip().lower()
    if normalized in {"localhost", socket.gethostname().lower()}:
        return True
    try:
        parsed = ipaddress.ip_address(normalized)
    except ValueError:
        return False
    return parsed.is_loopback or parsed.is_unspecified
