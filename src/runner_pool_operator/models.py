"""Pool, worker and registry data model."""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from . import crd

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ValidationError(ValueError):
    """Raised when a RunnerPool spec violates its invariants."""


def parse_duration(value) -> timedelta:
    """Parse a Go-style duration such as ``90s``, ``1m`` or ``1h30m``.

    Plain numbers are taken as seconds.
    """
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid duration: {value!r}")

    text = value.strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"Invalid duration: {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def reconciliation_period(raw_spec) -> timedelta:
    """Reconciliation period of a raw spec, falling back to the default."""
    value = (raw_spec or {}).get("reconciliationPeriod", crd.DEFAULT_RECONCILIATION_PERIOD)
    try:
        period = parse_duration(value)
    except ValueError:
        period = parse_duration(crd.DEFAULT_RECONCILIATION_PERIOD)
    if period <= timedelta(0):
        period = parse_duration(crd.DEFAULT_RECONCILIATION_PERIOD)
    return period


def format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class RegistryScope:
    """Organization, optionally narrowed to a repository."""

    organization: str
    repository: str = ""

    def __str__(self):
        if self.repository:
            return f"{self.organization}/{self.repository}"
        return self.organization


@dataclass(frozen=True)
class TokenRef:
    name: str = ""
    key: str = ""


@dataclass(frozen=True)
class PoolSpec:
    organization: str
    min_runners: int
    max_runners: int
    pod_template: dict
    repository: str = ""
    token_ref: TokenRef = TokenRef()
    reconciliation_period: timedelta = timedelta(minutes=1)
    min_ttl: timedelta = timedelta(0)
    deletion_order: str = crd.LEAST_RECENT

    @property
    def scope(self) -> RegistryScope:
        return RegistryScope(self.organization, self.repository)

    @classmethod
    def from_dict(cls, spec) -> "PoolSpec":
        """Parse and validate a RunnerPool spec.

        Raises:
            ValidationError: if a required field is missing or an invariant
                such as ``maxRunners >= minRunners`` does not hold.
        """
        spec = spec or {}
        organization = spec.get("organization")
        if not organization:
            raise ValidationError("organization is required")

        try:
            min_runners = int(spec.get("minRunners", 1))
            max_runners = int(spec["maxRunners"])
        except KeyError:
            raise ValidationError("maxRunners is required")
        except (TypeError, ValueError) as e:
            raise ValidationError(f"minRunners and maxRunners must be integers: {e}")

        if min_runners < 1:
            raise ValidationError("minRunners must be at least 1")
        if max_runners < min_runners:
            raise ValidationError("MaxRunners must be greater or equal to minRunners")

        pod_template = spec.get("podTemplateSpec")
        if not isinstance(pod_template, dict):
            raise ValidationError("podTemplateSpec is required")

        deletion_order = spec.get("deletionOrder", crd.LEAST_RECENT)
        if deletion_order not in crd.DELETION_ORDERS:
            raise ValidationError(
                f"Invalid deletionOrder: {deletion_order}. Allowed: {crd.DELETION_ORDERS}"
            )

        try:
            min_ttl = parse_duration(spec.get("minTTL", crd.DEFAULT_MIN_TTL))
        except ValueError as e:
            raise ValidationError(f"minTTL: {e}")

        token_ref = spec.get("tokenRef") or {}
        return cls(
            organization=organization,
            repository=spec.get("repository", "") or "",
            min_runners=min_runners,
            max_runners=max_runners,
            pod_template=pod_template,
            token_ref=TokenRef(token_ref.get("name", ""), token_ref.get("key", "")),
            reconciliation_period=reconciliation_period(spec),
            min_ttl=min_ttl,
            deletion_order=deletion_order,
        )


@dataclass
class Condition:
    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: str = ""
    observed_generation: Optional[int] = None

    def to_dict(self):
        result = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }
        if self.observed_generation is not None:
            result["observedGeneration"] = self.observed_generation
        return result

    @classmethod
    def from_dict(cls, data):
        return cls(
            type=data.get("type", ""),
            status=data.get("status", ""),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=data.get("lastTransitionTime", ""),
            observed_generation=data.get("observedGeneration"),
        )


def set_condition(conditions: List[Condition], condition: Condition) -> List[Condition]:
    """Return a new condition list with ``condition`` upserted by type.

    The previous transition time is kept when the status did not change.
    """
    result = []
    replaced = False
    for existing in conditions:
        if existing.type != condition.type:
            result.append(existing)
            continue
        if existing.status == condition.status and existing.last_transition_time:
            condition = replace(condition, last_transition_time=existing.last_transition_time)
        result.append(condition)
        replaced = True
    if not replaced:
        result.append(condition)
    return result


@dataclass
class PoolStatus:
    current_size: int = 0
    conditions: List[Condition] = field(default_factory=list)

    def record(self, condition: Condition):
        self.conditions = set_condition(self.conditions, condition)

    def to_dict(self):
        return {
            "currentSize": self.current_size,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            current_size=int(data.get("currentSize", 0) or 0),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )


@dataclass
class Pool:
    """A validated RunnerPool object."""

    name: str
    namespace: str
    uid: str
    spec: PoolSpec
    status: PoolStatus = field(default_factory=PoolStatus)
    generation: Optional[int] = None

    @classmethod
    def from_object(cls, obj) -> "Pool":
        metadata = obj.get("metadata", {})
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            uid=metadata.get("uid", ""),
            spec=PoolSpec.from_dict(obj.get("spec")),
            status=PoolStatus.from_dict(obj.get("status")),
            generation=metadata.get("generation"),
        )


@dataclass
class WorkerInstance:
    """A runner pod owned by a pool."""

    name: str
    namespace: str
    created_at: datetime
    phase: str = crd.POD_PENDING
    reason: str = ""
    deleting: bool = False
    finalizers: List[str] = field(default_factory=list)
    resource: object = None

    @property
    def terminating(self):
        return self.deleting

    @property
    def evicted(self):
        return "Evicted" in (self.reason or "")

    @property
    def completed(self):
        return self.phase == crd.POD_SUCCEEDED

    @property
    def lifecycle(self):
        if self.terminating:
            return crd.LIFECYCLE_TERMINATING
        if self.evicted:
            return crd.LIFECYCLE_EVICTED
        return {
            crd.POD_RUNNING: crd.LIFECYCLE_RUNNING,
            crd.POD_SUCCEEDED: crd.LIFECYCLE_SUCCEEDED,
            crd.POD_FAILED: crd.LIFECYCLE_FAILED,
        }.get(self.phase, crd.LIFECYCLE_PENDING)

    def has_marker(self, marker):
        return marker in self.finalizers

    def clear_marker(self, marker):
        self.finalizers = [f for f in self.finalizers if f != marker]

    @classmethod
    def from_pod(cls, pod) -> "WorkerInstance":
        """Build from a kubernetes ``V1Pod``."""
        metadata = pod.metadata
        status = pod.status
        created_at = metadata.creation_timestamp or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            name=metadata.name,
            namespace=metadata.namespace,
            created_at=created_at,
            phase=(status.phase if status else None) or crd.POD_PENDING,
            reason=(status.reason if status else None) or "",
            deleting=metadata.deletion_timestamp is not None,
            finalizers=list(metadata.finalizers or []),
            resource=pod,
        )


@dataclass(frozen=True)
class RegistryEntry:
    """A runner as the registry sees it."""

    name: str
    id: int = 0
    busy: bool = False
    status: str = "online"

    @classmethod
    def from_api(cls, data) -> "RegistryEntry":
        return cls(
            name=data.get("name") or "",
            id=int(data.get("id") or 0),
            busy=bool(data.get("busy")),
            status=data.get("status") or "",
        )


@dataclass(frozen=True)
class RegistrationCredential:
    token: str
    expires_at: Optional[datetime] = None

    def expiry_epoch(self) -> str:
        if self.expires_at is None:
            return ""
        return str(int(self.expires_at.timestamp()))
