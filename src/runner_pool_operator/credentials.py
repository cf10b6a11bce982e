"""Registration token lifecycle."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import RegistrationCredential

logger = logging.getLogger(__name__)


def parse_expiry(value) -> Optional[datetime]:
    """Parse a stored expiry epoch; None when missing or unparsable."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(str(value).strip()), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class CredentialManager:
    """Keeps each pool's registration token valid ahead of its expiry."""

    def __init__(self, store, registry, config, clock=None):
        self.store = store
        self.registry = registry
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def skew(self):
        return timedelta(seconds=self.config.token_skew_seconds)

    def needs_refresh(self, credential, now=None) -> bool:
        if credential is None or credential.expires_at is None:
            return True
        now = now or self.clock()
        return now + self.skew >= credential.expires_at

    def ensure_fresh(self, pool) -> RegistrationCredential:
        credential = self.store.get(pool)
        if credential is None:
            logger.info(f"Registration secret for {pool.namespace}/{pool.name} not found, creating")
        elif credential.expires_at is None:
            logger.info(f"Registration secret for {pool.namespace}/{pool.name} has no valid expiry, recreating")
        elif self.needs_refresh(credential):
            logger.info(f"Registration token for {pool.namespace}/{pool.name} expires at {credential.expires_at}, updating")
        else:
            return credential
        return self.mint(pool)

    def mint(self, pool) -> RegistrationCredential:
        reference = self.store.reference_token(pool)
        credential = self.registry.mint_credential(pool.spec.scope, reference)
        self.store.put(pool, credential)
        return credential
