import ipaddress
import logging
import random
from typing import List, Optional

from core.context import OperationContext
from core.domain_xml import DomainTemplate, parse_domain_xml
from core.errors import (
    AddressPoolExhausted,
    BackendError,
    BackendUnavailable,
    DNSUpdateFailed,
    DomainCreationFailed,
    DomainDescriptionUnavailable,
    DomainNotFound,
    DomainRemovalFailed,
    InvalidArgument,
    LookupFailed,
    MalformedDomainXML,
    NotFound,
    StepFailed,
    StorageProvisioningFailed,
    StorageRemovalFailed,
    TemplateError,
)
from core.inventory import InventoryReader
from core.logger import log_event
from core.metrics import record_operation_failure
from core.models import CreateRequest, FindBy, VMRecord
from core.network import generate_ipv4
from core.storage import is_valid_volume_name

# Candidate addresses tried per create before giving up.
IP_ALLOCATION_ATTEMPTS = 10

# Interface metadata is not reliably available right after start, so create
# does not report a MAC.
MAC_PLACEHOLDER = "FIXME"


class VMController:
    """
    VM lifecycle across the hypervisor, the volume group and the DNS zone.

    All collaborators are handed in by the caller:

        * compute  - domain enumeration and lifecycle (see core.compute)
        * storage  - per-VM logical volumes (see core.storage)
        * dns      - A records inside the VM zone (see core.dns.DnsClient)

    Create and destroy run their steps strictly in order and stop at the
    first failure. Completed steps are never rolled back; the raised
    StepFailed says which step broke and what was already committed, and the
    same is written to the log for manual reconciliation.

    IP allocation is best-effort: a candidate is taken once a scan of the
    live inventory does not find it. Two concurrent creates can still pick
    the same address.
    """

    def __init__(
        self,
        compute,
        storage,
        dns,
        subnet: ipaddress.IPv4Network,
        template: DomainTemplate,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.compute = compute
        self.storage = storage
        self.dns = dns
        self.subnet = subnet
        self.template = template
        self.rng = rng or random.Random()
        self.inventory = InventoryReader(compute)

    # ------------------------------------------------------------------
    # Utility methods
    # ------------------------------------------------------------------
    @staticmethod
    def _failure(exc_cls, message: str, operation: str, step: str, committed: List[str]) -> StepFailed:
        log_event(
            f"[vm] {operation} failed at step '{step}': {message}; "
            f"already committed: {committed or 'nothing'}",
            logging.ERROR,
        )
        record_operation_failure(operation, step)
        return exc_cls(message, operation=operation, step=step, committed=committed)

    @staticmethod
    def _validate_create(request: CreateRequest) -> None:
        if not request.name:
            raise InvalidArgument("name not specified")
        if not is_valid_volume_name(request.name):
            raise InvalidArgument(f"invalid name {request.name!r}")
        if not request.memory or request.memory <= 0:
            raise InvalidArgument("mem not specified")
        if not request.cores or request.cores <= 0:
            raise InvalidArgument("cores not specified")
        if not request.size or request.size <= 0:
            raise InvalidArgument("size not specified")
        if not request.source_image:
            raise InvalidArgument("sourceImage not specified")
        if not is_valid_volume_name(request.source_image):
            raise InvalidArgument(f"invalid sourceImage {request.source_image!r}")

    def _allocate_ip(self, ctx: OperationContext, committed: List[str]) -> str:
        for attempt in range(1, IP_ALLOCATION_ATTEMPTS + 1):
            ctx.check("create", "allocate_ip", committed)
            candidate = generate_ipv4(self.subnet, self.rng)
            try:
                self.inventory.find(FindBy.IP, candidate)
            except NotFound:
                return candidate
            log_event(f"[vm] Address {candidate} already taken (attempt {attempt})", logging.DEBUG)

        raise self._failure(
            AddressPoolExhausted,
            f"failed to generate a new ip after {IP_ALLOCATION_ATTEMPTS} attempts",
            "create",
            "allocate_ip",
            committed,
        )

    # ------------------------------------------------------------------
    # Public VM operations
    # ------------------------------------------------------------------
    def create_vm(self, request: CreateRequest, ctx: Optional[OperationContext] = None) -> VMRecord:
        ctx = ctx or OperationContext()
        self._validate_create(request)

        name = request.name
        committed: List[str] = []

        # 1) storage
        ctx.check("create", "storage", committed)
        try:
            self.storage.create_volume(name, request.size)
            committed.append("create_volume")
            self.storage.clone_volume(request.source_image, name)
            committed.append("clone_volume")
        except BackendError as e:
            raise self._failure(
                StorageProvisioningFailed, f"failed to create storage: {e}", "create", "storage", committed
            ) from e

        # 2) address
        try:
            ip = self._allocate_ip(ctx, committed)
        except BackendUnavailable as e:
            log_event(
                f"[vm] create failed at step 'allocate_ip': {e}; already committed: {committed}",
                logging.ERROR,
            )
            record_operation_failure("create", "allocate_ip")
            raise

        # 3) domain xml
        try:
            domain_xml = self.template.render(
                name=name,
                memory=request.memory,
                cores=request.cores,
                disk_path=self.storage.block_device_path(name),
                ip=ip,
            )
        except TemplateError as e:
            log_event(
                f"[vm] create failed at step 'render': {e}; already committed: {committed}",
                logging.ERROR,
            )
            record_operation_failure("create", "render")
            raise

        # 4) define + start
        ctx.check("create", "domain", committed)
        try:
            dom = self.compute.define_domain(domain_xml)
        except BackendError as e:
            raise self._failure(
                DomainCreationFailed, f"failed to define vm: {e}", "create", "domain", committed
            ) from e
        committed.append("define_domain")

        try:
            self.compute.start_domain(dom)
        except BackendError as e:
            raise self._failure(
                DomainCreationFailed, f"failed to create vm: {e}", "create", "domain", committed
            ) from e
        committed.append("start_domain")

        # 5) dns
        ctx.check("create", "dns", committed)
        try:
            self.dns.add(name, ip)
        except BackendError as e:
            raise self._failure(
                DNSUpdateFailed, f"failed to update dns record: {e}", "create", "dns", committed
            ) from e

        log_event(
            f"[vm] Created VM '{name}' (ip={ip}, memory={request.memory}B, "
            f"cores={request.cores}, disk={request.size}B, image={request.source_image})"
        )
        return VMRecord(name=name, ip=ip, mac=MAC_PLACEHOLDER)

    def destroy_vm(self, name: str, ctx: Optional[OperationContext] = None) -> None:
        ctx = ctx or OperationContext()
        if not name:
            raise InvalidArgument("name not specified")

        committed: List[str] = []

        ctx.check("destroy", "lookup", committed)
        try:
            dom = self.compute.lookup_domain(name)
        except DomainNotFound as e:
            record_operation_failure("destroy", "lookup")
            raise LookupFailed(f"failed to lookup vm: {e}") from e
        except BackendError as e:
            log_event(f"[vm] destroy failed at step 'lookup': {e}", logging.ERROR)
            record_operation_failure("destroy", "lookup")
            raise BackendUnavailable(f"failed to lookup vm: {e}") from e

        try:
            info = parse_domain_xml(self.compute.domain_xml(dom))
        except (BackendError, MalformedDomainXML) as e:
            raise self._failure(
                DomainDescriptionUnavailable, f"failed to get vm xml: {e}", "destroy", "describe", committed
            ) from e
        ip = info.ip
        if not ip:
            raise self._failure(
                DomainDescriptionUnavailable, f"failed to get ip for node {name}", "destroy", "describe", committed
            )

        # DNS goes first: a short window of a live VM without a name is
        # preferred over a name pointing at a deleted VM.
        ctx.check("destroy", "dns", committed)
        try:
            self.dns.remove(name, ip)
        except BackendError as e:
            raise self._failure(
                DNSUpdateFailed, f"failed to update dns record: {e}", "destroy", "dns", committed
            ) from e
        committed.append("dns_delete")

        ctx.check("destroy", "stop", committed)
        try:
            self.compute.stop_domain(dom)
            committed.append("stop_domain")
        except BackendError as e:
            log_event(f"[vm] failed to destroy vm '{name}': {e}, continuing with undefining")

        ctx.check("destroy", "undefine", committed)
        try:
            self.compute.undefine_domain(dom)
        except BackendError as e:
            raise self._failure(
                DomainRemovalFailed, f"failed to undefine vm: {e}", "destroy", "undefine", committed
            ) from e
        committed.append("undefine_domain")

        ctx.check("destroy", "storage", committed)
        try:
            self.storage.remove_volume(name)
        except BackendError as e:
            raise self._failure(
                StorageRemovalFailed, f"failed to remove vm storage: {e}", "destroy", "storage", committed
            ) from e

        log_event(f"[vm] Destroyed VM '{name}' (ip={ip})")

    def list_vms(self, ctx: Optional[OperationContext] = None) -> List[VMRecord]:
        return self.inventory.list_all(ctx)

    def find_vm(self, by: Optional[FindBy], value: str, ctx: Optional[OperationContext] = None) -> VMRecord:
        return self.inventory.find(by, value, ctx)
