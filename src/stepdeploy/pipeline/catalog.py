"""Step catalog: the fixed, ordered deployment plan."""

from __future__ import annotations

import shlex
from typing import Tuple

from .models import Step

HEALTH_CHECK_ID = "health_check"


def app_dir(deploy_path: str, app_name: str) -> str:
    """Application directory, always directly under deploy_path."""
    return f"{deploy_path.rstrip('/')}/{app_name}"


def build_catalog(
    app_name: str,
    app_version: str,
    deploy_path: str,
    health_check_enabled: bool,
) -> Tuple[Step, ...]:
    """
    Build the ordered list of steps for one run.

    Pure function: no I/O and no randomness, so equal arguments always give
    equal catalogs. The health check, when enabled, is always the last step.

    Args:
        app_name: Application name
        app_version: Version to deploy
        deploy_path: Absolute base directory of deployments
        health_check_enabled: Append the health check step

    Returns:
        Tuple of fresh, pending steps
    """
    base = shlex.quote(deploy_path)
    target_dir = app_dir(deploy_path, app_name)
    target = shlex.quote(target_dir)
    label = shlex.quote(f"{app_name}:{app_version}")
    name = shlex.quote(app_name)

    definitions = [
        (
            "validate",
            "Validate Environment",
            "Check system requirements and permissions",
            f"test -d {base} && test -w {base}",
            True,
        ),
        (
            "backup",
            "Backup Current Version",
            "Create backup of existing deployment",
            f"if [ -d {target} ]; then cp -r {target} {target}.backup.$(date +%s); fi",
            False,
        ),
        (
            "download",
            "Download Application",
            f"Download {app_name} version {app_version}",
            f"mkdir -p /tmp/deploy && echo Downloading {label}",
            True,
        ),
        (
            "extract",
            "Extract Package",
            "Extract application package to deployment directory",
            f"echo Extracting to {target} && mkdir -p {target}",
            True,
        ),
        (
            "configure",
            "Configure Application",
            "Apply configuration and environment settings",
            f"echo Configuring {name} && touch {shlex.quote(target_dir + '/config.yml')}",
            True,
        ),
        (
            "permissions",
            "Set Permissions",
            "Configure file permissions and ownership",
            f"chmod -R 755 {target} && echo 'Permissions set'",
            True,
        ),
        (
            "start",
            "Start Service",
            "Start the application service",
            f"echo Starting {name} service",
            True,
        ),
    ]

    if health_check_enabled:
        definitions.append(
            (
                HEALTH_CHECK_ID,
                "Health Check",
                "Verify application is running correctly",
                f"echo Health check for {name} && test -d {target} && echo 'Service is healthy'",
                True,
            )
        )

    return tuple(
        Step(
            id=step_id,
            name=step_name,
            description=description,
            command=command,
            critical=critical,
            metadata={
                "critical": critical,
                "command": command,
                "app_name": app_name,
                "app_version": app_version,
            },
        )
        for step_id, step_name, description, command, critical in definitions
    )
