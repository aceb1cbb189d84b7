"""Startup configuration guard — enforces hard constraints before serving.

The guard runs once when the hub is constructed and fails hard (raises
``ConfigurationError``) if any constraint is violated.  All violations
are collected and reported together.

This module is the single enforcement point for startup invariants.
Other code should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from jobhub.config import HubConfig
from jobhub.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Shortest bearer token accepted in production.
MIN_PRODUCTION_TOKEN_LENGTH = 16


def collect_violations(config: HubConfig, *, require_token: bool = True) -> list[str]:
    """Return every startup constraint the configuration violates.

    ``require_token`` is false only for in-process use without a listener
    (``jobhub run``).
    """
    violations: list[str] = []
    token = config.api_token.get_secret_value()

    if require_token and not token:
        violations.append(
            "An API token is required. Pass --api-token or set API_TOKEN / JOBHUB_API_TOKEN."
        )

    if not config.projects_dir.is_dir():
        violations.append(
            f"Projects root {config.projects_dir} is not an existing directory."
        )

    if not config.default_entrypoint:
        violations.append("default_entrypoint must name at least one argument.")

    if config.is_production:
        if config.debug:
            violations.append(
                "debug=True is not allowed in production. Set JOBHUB_DEBUG=false."
            )
        if token and len(token) < MIN_PRODUCTION_TOKEN_LENGTH:
            violations.append(
                f"API token must be at least {MIN_PRODUCTION_TOKEN_LENGTH} characters in production."
            )

    return violations


def enforce_hub_constraints(config: HubConfig, *, require_token: bool = True) -> None:
    """Validate all startup-critical configuration constraints.

    Raises
    ------
    ConfigurationError
        If any constraint is violated.
    """
    violations = collect_violations(config, require_token=require_token)
    if violations:
        msg = "Startup configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ConfigurationError(msg)

    logger.debug("Startup configuration guard passed.")
