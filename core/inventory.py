import logging
from typing import List, Optional

from core.context import OperationContext
from core.domain_xml import parse_domain_xml
from core.errors import BackendError, BackendUnavailable, InvalidArgument, MalformedDomainXML, NotFound
from core.logger import log_event
from core.metrics import record_inventory_size
from core.models import FindBy, VMRecord


class InventoryReader:
    """
    Rebuilds VM records from the hypervisor's live domain set.

    ``list_all`` is all-or-nothing: one unreadable domain fails the whole
    listing. ``find`` is a best-effort scan that skips unreadable domains.
    """

    def __init__(self, compute) -> None:
        self.compute = compute

    def _domains(self) -> list:
        try:
            return list(self.compute.list_domains())
        except BackendError as e:
            raise BackendUnavailable(f"failed to get domains: {e}") from e

    def _read_record(self, dom) -> VMRecord:
        name = self.compute.domain_name(dom)
        info = parse_domain_xml(self.compute.domain_xml(dom))

        macs = info.mac_addresses
        if len(macs) != 1:
            log_event(f"[inventory] strange mac count on {name}: {list(macs)}", logging.WARNING)
        mac = macs[0] if macs else ""

        if not info.ip:
            log_event(f"[inventory] failed to get ip for node {name}", logging.WARNING)

        return VMRecord(name=name, ip=info.ip, mac=mac)

    def list_all(self, ctx: Optional[OperationContext] = None) -> List[VMRecord]:
        if ctx is not None:
            ctx.check("list", "list_domains")

        vms: List[VMRecord] = []
        for dom in self._domains():
            try:
                vms.append(self._read_record(dom))
            except BackendError as e:
                raise BackendUnavailable(f"failed to read domain: {e}") from e
            except MalformedDomainXML:
                log_event("[inventory] Aborting list: unparseable domain xml", logging.ERROR)
                raise

        record_inventory_size(len(vms))
        return vms

    def find(self, by: Optional[FindBy], value: str, ctx: Optional[OperationContext] = None) -> VMRecord:
        try:
            by = FindBy(by) if by is not None else FindBy.UNSPECIFIED
        except ValueError as e:
            raise InvalidArgument(f"unknown search criteria: {by}") from e
        if by is FindBy.UNSPECIFIED:
            raise InvalidArgument("search criteria not specified")
        if not value:
            raise InvalidArgument(f"no {by.value} to search for")

        if ctx is not None:
            ctx.check("find", "list_domains")

        for dom in self._domains():
            try:
                vm = self._read_record(dom)
            except (BackendError, MalformedDomainXML) as e:
                log_event(f"[inventory] Skipping domain during find: {e}", logging.WARNING)
                continue

            if by is FindBy.IP and vm.ip == value:
                return vm
            if by is FindBy.MAC and vm.mac == value:
                return vm

        raise NotFound(f"no vm with {by.value} {value}")
