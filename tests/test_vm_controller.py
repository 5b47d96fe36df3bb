"""Tests for create/destroy sequencing in VMController."""

import ipaddress
import random
import xml.etree.ElementTree as ET

import pytest

from core.context import OperationContext
from core.errors import (
    AddressPoolExhausted,
    BackendUnavailable,
    DNSUpdateFailed,
    DomainCreationFailed,
    DomainDescriptionUnavailable,
    DomainRemovalFailed,
    InvalidArgument,
    LookupFailed,
    NotFound,
    OperationCancelled,
    StorageProvisioningFailed,
    StorageRemovalFailed,
    TemplateError,
)
from core.domain_xml import DomainTemplate
from core.models import CreateRequest, FindBy
from core.network import parse_subnet
from core.vm_controller import IP_ALLOCATION_ATTEMPTS, MAC_PLACEHOLDER, VMController

MUTATING = {
    "create_volume",
    "clone_volume",
    "define_domain",
    "start_domain",
    "stop_domain",
    "undefine_domain",
    "remove_volume",
    "dns_add",
    "dns_remove",
}


class SequenceBits:
    """rng stand-in replaying fixed 32-bit values."""

    def __init__(self, values):
        self.values = list(values)

    def getrandbits(self, k):
        return self.values.pop(0)


def _request(**overrides):
    fields = dict(
        name="vm1",
        memory=1073741824,
        cores=2,
        size=3221225472,
        source_image="ubuntu-20.04",
    )
    fields.update(overrides)
    return CreateRequest(**fields)


def _mutations(calls):
    return [c[0] for c in calls if c[0] in MUTATING]


# ---------------------------------------------------------------------------
# create_vm
# ---------------------------------------------------------------------------

class TestCreateValidation:

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": ""},
            {"memory": 0},
            {"cores": 0},
            {"size": 0},
            {"source_image": ""},
            {"name": None},
            {"memory": None},
            {"memory": -1},
            {"name": "../vm1"},
            {"name": ".."},
            {"name": "-vm1"},
            {"source_image": "../sda"},
            {"source_image": "vms/ubuntu-20.04"},
        ],
    )
    def test_missing_field_makes_no_backend_call(self, controller, calls, overrides):
        with pytest.raises(InvalidArgument):
            controller.create_vm(_request(**overrides))
        assert calls == []


class TestCreate:

    def test_end_to_end(self, controller, compute, dns, calls):
        vm = controller.create_vm(_request())

        assert vm.name == "vm1"
        ip = ipaddress.IPv4Address(vm.ip)
        assert ipaddress.IPv4Address("10.0.0.1") <= ip <= ipaddress.IPv4Address("10.0.0.254")
        assert vm.mac == MAC_PLACEHOLDER

        assert _mutations(calls) == [
            "create_volume",
            "clone_volume",
            "define_domain",
            "start_domain",
            "dns_add",
        ]
        assert ("create_volume", "vm1", 3221225472) in calls
        assert ("clone_volume", "ubuntu-20.04", "vm1") in calls
        assert ("dns_add", "vm1", vm.ip) in calls
        assert dns.records == {"vm1": vm.ip}

    def test_defined_domain_xml(self, controller, compute):
        vm = controller.create_vm(_request())
        root = ET.fromstring(compute.domains[0].xml)
        assert root.findtext("name") == "vm1"
        assert root.findtext("memory") == "1073741824"
        assert root.findtext("vcpu") == "2"
        assert root.find(".//disk/source").get("dev") == "/dev/vms/vm1"
        assert vm.ip in compute.domains[0].xml
        assert compute.domains[0].running

    def test_created_vm_is_findable(self, controller):
        vm = controller.create_vm(_request())
        assert controller.find_vm(FindBy.IP, vm.ip).name == "vm1"

    def test_skips_taken_addresses(self, compute, storage, dns, template, calls):
        subnet = parse_subnet("10.0.0.4/30")  # hosts .5 and .6
        compute.add("existing", ip="10.0.0.5")
        controller = VMController(compute, storage, dns, subnet, template, rng=SequenceBits([1, 1, 2]))
        assert controller.create_vm(_request()).ip == "10.0.0.6"
        assert calls.count(("list_domains",)) == 3

    def test_address_pool_exhausted(self, compute, storage, dns, template, calls):
        subnet = parse_subnet("10.0.0.4/30")
        compute.add("a", ip="10.0.0.5")
        compute.add("b", ip="10.0.0.6")
        controller = VMController(compute, storage, dns, subnet, template, rng=random.Random(7))

        with pytest.raises(AddressPoolExhausted) as excinfo:
            controller.create_vm(_request())

        assert excinfo.value.step == "allocate_ip"
        assert excinfo.value.committed == ("create_volume", "clone_volume")
        assert calls.count(("list_domains",)) == IP_ALLOCATION_ATTEMPTS
        assert _mutations(calls) == ["create_volume", "clone_volume"]

    def test_address_pool_exhausted_full_subnet(self, controller, compute, calls):
        for host in range(1, 255):
            compute.add(f"vm-{host}", ip=f"10.0.0.{host}")
        with pytest.raises(AddressPoolExhausted):
            controller.create_vm(_request(name="new"))
        assert "define_domain" not in _mutations(calls)
        assert "dns_add" not in _mutations(calls)

    def test_collision_check_backend_down(self, controller, compute, calls):
        compute.fail.add("list_domains")
        with pytest.raises(BackendUnavailable):
            controller.create_vm(_request())
        assert _mutations(calls) == ["create_volume", "clone_volume"]

    @pytest.mark.parametrize("failing", ["create_volume", "clone_volume"])
    def test_storage_failure(self, controller, storage, calls, failing):
        storage.fail.add(failing)
        with pytest.raises(StorageProvisioningFailed) as excinfo:
            controller.create_vm(_request())
        assert excinfo.value.step == "storage"
        assert excinfo.value.__cause__ is not None
        assert _mutations(calls)[-1] == failing
        assert ("list_domains",) not in calls

    def test_define_failure(self, controller, compute, dns, calls):
        compute.fail.add("define_domain")
        with pytest.raises(DomainCreationFailed) as excinfo:
            controller.create_vm(_request())
        assert excinfo.value.committed == ("create_volume", "clone_volume")
        assert "start_domain" not in _mutations(calls)
        assert dns.records == {}

    def test_start_failure(self, controller, compute, dns, calls):
        compute.fail.add("start_domain")
        with pytest.raises(DomainCreationFailed) as excinfo:
            controller.create_vm(_request())
        assert excinfo.value.committed == ("create_volume", "clone_volume", "define_domain")
        assert "dns_add" not in _mutations(calls)

    def test_dns_failure_leaves_vm_running(self, controller, compute, dns):
        dns.fail.add("add")
        with pytest.raises(DNSUpdateFailed) as excinfo:
            controller.create_vm(_request())
        assert excinfo.value.step == "dns"
        assert excinfo.value.committed == ("create_volume", "clone_volume", "define_domain", "start_domain")
        assert compute.domains[0].running

    def test_bad_template(self, compute, storage, dns, subnet, calls):
        controller = VMController(compute, storage, dns, subnet, DomainTemplate("<domain>{nope}</domain>"))
        with pytest.raises(TemplateError):
            controller.create_vm(_request())
        assert "define_domain" not in _mutations(calls)

    def test_cancelled_before_start(self, controller, calls):
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(OperationCancelled) as excinfo:
            controller.create_vm(_request(), ctx)
        assert excinfo.value.step == "storage"
        assert calls == []

    def test_expired_deadline(self, controller, calls):
        with pytest.raises(OperationCancelled):
            controller.create_vm(_request(), OperationContext.with_timeout(-1))
        assert calls == []

    def test_invalid_request_wins_over_cancellation(self, controller):
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(InvalidArgument):
            controller.create_vm(_request(name=""), ctx)


# ---------------------------------------------------------------------------
# destroy_vm
# ---------------------------------------------------------------------------

class TestDestroy:

    @pytest.fixture
    def existing(self, compute, storage, dns):
        dom = compute.add("vm1", ip="10.0.0.5")
        dom.running = True
        storage.volumes["vm1"] = 3221225472
        dns.records["vm1"] = "10.0.0.5"
        return dom

    def test_empty_name(self, controller, calls):
        with pytest.raises(InvalidArgument):
            controller.destroy_vm("")
        assert calls == []

    def test_end_to_end(self, controller, existing, compute, storage, dns, calls):
        controller.destroy_vm("vm1")
        assert _mutations(calls) == ["dns_remove", "stop_domain", "undefine_domain", "remove_volume"]
        assert ("dns_remove", "vm1", "10.0.0.5") in calls
        assert compute.domains == []
        assert storage.volumes == {}
        assert dns.records == {}

    def test_unknown_domain(self, controller, calls):
        with pytest.raises(LookupFailed):
            controller.destroy_vm("ghost")
        assert _mutations(calls) == []

    def test_hypervisor_unreachable_on_lookup(self, controller, existing, compute, calls):
        compute.fail.add("lookup_domain")
        with pytest.raises(BackendUnavailable):
            controller.destroy_vm("vm1")
        assert _mutations(calls) == []
        assert compute.domains == [existing]

    def test_no_embedded_ip(self, controller, compute, calls):
        compute.add("vm1", ip=None)
        with pytest.raises(DomainDescriptionUnavailable):
            controller.destroy_vm("vm1")
        assert _mutations(calls) == []

    def test_unparseable_xml(self, controller, compute, calls):
        compute.add("vm1", xml="<domain")
        with pytest.raises(DomainDescriptionUnavailable):
            controller.destroy_vm("vm1")
        assert _mutations(calls) == []

    def test_xml_unreadable(self, controller, existing, compute, calls):
        compute.fail.add("domain_xml")
        with pytest.raises(DomainDescriptionUnavailable):
            controller.destroy_vm("vm1")
        assert _mutations(calls) == []

    def test_dns_failure_aborts_before_shutdown(self, controller, existing, dns, calls):
        dns.fail.add("remove")
        with pytest.raises(DNSUpdateFailed) as excinfo:
            controller.destroy_vm("vm1")
        assert excinfo.value.committed == ()
        assert _mutations(calls) == ["dns_remove"]
        assert existing.running

    def test_stop_failure_is_not_fatal(self, controller, existing, compute, storage, calls):
        compute.fail.add("stop_domain")
        controller.destroy_vm("vm1")
        assert _mutations(calls) == ["dns_remove", "stop_domain", "undefine_domain", "remove_volume"]
        assert storage.volumes == {}

    def test_undefine_failure_keeps_storage(self, controller, existing, compute, storage, calls):
        compute.fail.add("undefine_domain")
        with pytest.raises(DomainRemovalFailed) as excinfo:
            controller.destroy_vm("vm1")
        assert excinfo.value.committed == ("dns_delete", "stop_domain")
        assert "remove_volume" not in _mutations(calls)
        assert "vm1" in storage.volumes

    def test_storage_removal_failure(self, controller, existing, compute, storage):
        storage.fail.add("remove_volume")
        with pytest.raises(StorageRemovalFailed) as excinfo:
            controller.destroy_vm("vm1")
        assert excinfo.value.committed == ("dns_delete", "stop_domain", "undefine_domain")
        assert compute.domains == []

    def test_cancelled(self, controller, existing, calls):
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(OperationCancelled):
            controller.destroy_vm("vm1", ctx)
        assert calls == []


# ---------------------------------------------------------------------------
# list_vms / find_vm
# ---------------------------------------------------------------------------

class TestListAndFind:

    def test_list(self, controller, compute):
        compute.add("vm1", ip="10.0.0.5")
        compute.add("vm2", ip="10.0.0.6")
        assert [vm.name for vm in controller.list_vms()] == ["vm1", "vm2"]

    def test_find_unset(self, controller):
        with pytest.raises(InvalidArgument):
            controller.find_vm(None, "10.0.0.5")

    def test_find_by_ip(self, controller, compute):
        compute.add("vm1", ip="10.0.0.5")
        assert controller.find_vm(FindBy.IP, "10.0.0.5").name == "vm1"

    def test_find_none(self, controller, compute):
        compute.add("vm1", ip="10.0.0.4")
        with pytest.raises(NotFound):
            controller.find_vm(FindBy.IP, "10.0.0.5")
