import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram

# -----------------------------
# HTTP / API level metrics
# -----------------------------
REQUEST_COUNT = Counter(
    "vm_registry_requests_total",
    "Total HTTP requests to vm-registry",
    ["method", "endpoint"],
)

REQUEST_LATENCY = Histogram(
    "vm_registry_request_latency_seconds",
    "Latency of HTTP requests to vm-registry",
    ["endpoint"],
)


# -----------------------------
# VM lifecycle metrics
# -----------------------------
VM_CREATED_TOTAL = Counter(
    "vm_registry_vm_created_total",
    "Total number of VMs created",
)

VM_DESTROYED_TOTAL = Counter(
    "vm_registry_vm_destroyed_total",
    "Total number of VMs destroyed",
)

OPERATION_FAILURES = Counter(
    "vm_registry_operation_failures_total",
    "Failed create/destroy operations, by the step that failed",
    ["operation", "step"],
)

VM_INVENTORY = Gauge(
    "vm_registry_inventory_size",
    "Number of domains seen by the last successful list",
)

# -----------------------------
# Backend calls
# -----------------------------
BACKEND_CALL_LATENCY = Histogram(
    "vm_registry_backend_call_latency_seconds",
    "Latency of calls to libvirt, lvm and PowerDNS",
    ["backend", "call"],
)

BACKEND_CALL_ERRORS = Counter(
    "vm_registry_backend_call_errors_total",
    "Backend calls that raised",
    ["backend", "call"],
)


@contextmanager
def observe_backend_call(backend: str, call: str) -> Iterator[None]:
    start_time = time.time()
    try:
        yield
    except Exception:
        BACKEND_CALL_ERRORS.labels(backend=backend, call=call).inc()
        raise
    finally:
        BACKEND_CALL_LATENCY.labels(backend=backend, call=call).observe(time.time() - start_time)


def record_vm_created() -> None:
    VM_CREATED_TOTAL.inc()


def record_vm_destroyed() -> None:
    VM_DESTROYED_TOTAL.inc()


def record_operation_failure(operation: str, step: str) -> None:
    OPERATION_FAILURES.labels(operation=operation, step=step).inc()


def record_inventory_size(count: int) -> None:
    VM_INVENTORY.set(count)
