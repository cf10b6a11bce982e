"""Storage capabilities the reconciler is written against."""

import abc
from typing import List, Optional

from .models import Pool, PoolStatus, RegistrationCredential, WorkerInstance


class ResourceStore(abc.ABC):
    """Runner pods owned by a pool."""

    @abc.abstractmethod
    def list(self, pool: Pool) -> List[WorkerInstance]:
        ...

    @abc.abstractmethod
    def create(self, pool: Pool) -> WorkerInstance:
        ...

    @abc.abstractmethod
    def delete(self, worker: WorkerInstance) -> bool:
        """Delete ``worker``; return False if it was already gone."""

    @abc.abstractmethod
    def update(self, worker: WorkerInstance) -> None:
        """Persist ``worker.finalizers``."""


class CredentialStore(abc.ABC):
    """Registration token storage and the pool's reference token."""

    @abc.abstractmethod
    def get(self, pool: Pool) -> Optional[RegistrationCredential]:
        ...

    @abc.abstractmethod
    def put(self, pool: Pool, credential: RegistrationCredential) -> None:
        ...

    @abc.abstractmethod
    def reference_token(self, pool: Pool) -> str:
        """The long-lived token named by the pool's tokenRef, or ''."""


class PoolStore(abc.ABC):
    @abc.abstractmethod
    def get(self, namespace: str, name: str) -> Optional[dict]:
        """The raw RunnerPool object, or None when it no longer exists."""

    @abc.abstractmethod
    def update_status(self, namespace: str, name: str, status: PoolStatus) -> None:
        ...
