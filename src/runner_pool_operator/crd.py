"""CRD schema constants and helpers."""

# CRD Group, Version, and Kind
GROUP = "actions.runnerpool.io"
VERSION = "v1alpha1"
PLURAL = "runnerpools"
KIND = "RunnerPool"

# API version string
API_VERSION = f"{GROUP}/{VERSION}"

# Pod phases
POD_PENDING = "Pending"
POD_RUNNING = "Running"
POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"

# Worker lifecycle, as seen by the pool
LIFECYCLE_PENDING = "pending"
LIFECYCLE_RUNNING = "running"
LIFECYCLE_SUCCEEDED = "succeeded"
LIFECYCLE_FAILED = "failed"
LIFECYCLE_TERMINATING = "terminating"
LIFECYCLE_EVICTED = "evicted"

# Retirement ordering
LEAST_RECENT = "LeastRecent"
MOST_RECENT = "MostRecent"
DELETION_ORDERS = [LEAST_RECENT, MOST_RECENT]

# Status conditions
CONDITION_RECONCILE_SUCCESS = "ReconcileSuccess"
REASON_SUCCEEDED = "LastReconcileCycleSucceded"
REASON_FAILED = "LastReconcileCycleFailed"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_OUT_OF_SYNC = "OutOfSync"

# Spec defaults
DEFAULT_RECONCILIATION_PERIOD = "1m"
DEFAULT_MIN_TTL = "0s"
