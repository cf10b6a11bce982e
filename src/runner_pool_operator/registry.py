"""Runner registry clients.

The reconciler only depends on :class:`RegistryAPI`. ``GitHubRegistryAPI``
talks to the GitHub Actions REST API; ``InMemoryRegistryAPI`` keeps runners
in a dict and is used for tests and dry runs.
"""

import abc
import itertools
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import requests

from .models import RegistrationCredential, RegistryEntry, RegistryScope

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class RegistryError(Exception):
    """A registry call failed or was rejected."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class RegistryAPI(abc.ABC):
    @abc.abstractmethod
    def list_entries(self, scope: RegistryScope, token: str) -> List[RegistryEntry]:
        """Return every runner registered in ``scope``."""

    @abc.abstractmethod
    def deregister(self, scope: RegistryScope, token: str, entry_id: int) -> None:
        """Remove a runner. A runner that is already gone is not an error."""

    @abc.abstractmethod
    def mint_credential(self, scope: RegistryScope, token: str) -> RegistrationCredential:
        """Create a short-lived registration token for new runners."""


def parse_iso_datetime(iso_string):
    """Parses an ISO 8601 datetime string from the GitHub API."""
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"
    moment = datetime.fromisoformat(iso_string)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class GitHubRegistryAPI(RegistryAPI):
    """Self-hosted runner endpoints of the GitHub REST API."""

    def __init__(self, base_url="https://api.github.com", timeout=30.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    def _runners_path(self, scope):
        if scope.repository:
            return f"/repos/{scope.organization}/{scope.repository}/actions/runners"
        return f"/orgs/{scope.organization}/actions/runners"

    def _request(self, method, path, token, **kwargs):
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"token {token}"} if token else {}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            text = e.response.text if e.response is not None else ""
            raise RegistryError(f"GitHub API error [{method} {url}]: {status} - {text}", status=status) from e
        except requests.exceptions.RequestException as e:
            raise RegistryError(f"GitHub API connection error [{method} {url}]: {e}") from e
        return response

    def list_entries(self, scope, token):
        path = self._runners_path(scope)
        entries = []
        page = 1
        while True:
            response = self._request("GET", path, token, params={"per_page": PAGE_SIZE, "page": page})
            runners = response.json().get("runners", [])
            entries.extend(RegistryEntry.from_api(r) for r in runners)
            if len(runners) < PAGE_SIZE:
                break
            page += 1
        logger.debug(f"Listed {len(entries)} runners for {scope}")
        return entries

    def deregister(self, scope, token, entry_id):
        path = f"{self._runners_path(scope)}/{entry_id}"
        try:
            self._request("DELETE", path, token)
        except RegistryError as e:
            if e.status == 404:
                logger.info(f"Runner {entry_id} already absent from {scope}")
                return
            raise
        logger.info(f"Deregistered runner {entry_id} from {scope}")

    def mint_credential(self, scope, token):
        path = f"{self._runners_path(scope)}/registration-token"
        data = self._request("POST", path, token).json()
        try:
            return RegistrationCredential(
                token=data["token"],
                expires_at=parse_iso_datetime(data["expires_at"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryError(f"Malformed registration token response from {scope}: {e}") from e


class InMemoryRegistryAPI(RegistryAPI):
    """Registry held in memory, keyed by scope.

    Busy runners reject deregistration, the way GitHub refuses to remove a
    runner that is executing a job.
    """

    def __init__(self, token_lifetime=timedelta(hours=1), clock=None):
        self.token_lifetime = token_lifetime
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.runners: Dict[RegistryScope, Dict[int, RegistryEntry]] = {}
        self.deregistered: List[int] = []
        self.minted: List[RegistrationCredential] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, scope, name, busy=False, status="online") -> RegistryEntry:
        with self._lock:
            entry = RegistryEntry(name=name, id=next(self._ids), busy=busy, status=status)
            self.runners.setdefault(scope, {})[entry.id] = entry
            return entry

    def set_busy(self, scope, name, busy):
        with self._lock:
            runners = self.runners.get(scope, {})
            for entry_id, entry in runners.items():
                if entry.name == name:
                    runners[entry_id] = RegistryEntry(entry.name, entry.id, busy, entry.status)

    def list_entries(self, scope, token):
        with self._lock:
            return list(self.runners.get(scope, {}).values())

    def deregister(self, scope, token, entry_id):
        with self._lock:
            runners = self.runners.get(scope, {})
            entry = runners.get(entry_id)
            if entry is None:
                return
            if entry.busy:
                raise RegistryError(f"Runner {entry.name} is still running a job", status=422)
            del runners[entry_id]
            self.deregistered.append(entry_id)

    def mint_credential(self, scope, token):
        with self._lock:
            credential = RegistrationCredential(
                token=f"registration-{len(self.minted) + 1}",
                expires_at=self.clock() + self.token_lifetime,
            )
            self.minted.append(credential)
            return credential
