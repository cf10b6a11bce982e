"""Operator-wide configuration."""

import logging
import os
from dataclasses import dataclass

from . import crd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperatorConfig:
    """Naming conventions and tunables shared by the reconciler and its stores."""

    pool_label: str = f"{crd.GROUP}/pool"
    finalizer: str = f"{crd.GROUP}/runner-registration"
    token_key: str = "RUNNER_TOKEN"
    expiry_annotation: str = f"{crd.GROUP}/expiryTimestamp"
    token_secret_suffix: str = "regtoken"
    worker_name_infix: str = "pod"
    token_skew_seconds: float = 300.0
    request_timeout: float = 30.0
    github_url: str = "https://api.github.com"
    registry: str = "github"
    log_level: str = "INFO"

    def token_secret_name(self, pool_name):
        return f"{pool_name}-{self.token_secret_suffix}"

    def worker_name_prefix(self, pool_name):
        return f"{pool_name}-{self.worker_name_infix}-"

    @classmethod
    def from_env(cls, environ=None):
        """Build a config from RUNNER_POOL_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            token_skew_seconds=_float(env, "RUNNER_POOL_TOKEN_SKEW", defaults.token_skew_seconds),
            request_timeout=_float(env, "RUNNER_POOL_REQUEST_TIMEOUT", defaults.request_timeout),
            github_url=env.get("RUNNER_POOL_GITHUB_URL", defaults.github_url).rstrip("/"),
            registry=env.get("RUNNER_POOL_REGISTRY", defaults.registry),
            log_level=env.get("RUNNER_POOL_LOG_LEVEL", defaults.log_level).upper(),
        )


def _float(env, key, default):
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {key}={value!r}, using {default}")
        return default
