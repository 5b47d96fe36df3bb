"""Shared test fixtures."""

import os
import random
import tempfile

# keep test runs from writing into the project's log/ directory
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="vm-registry-log-"))

import pytest

from core.domain_xml import DomainTemplate
from core.network import parse_subnet
from core.vm_controller import VMController
from fakes import FakeCompute, FakeDns, FakeStorage

TEMPLATE = """<domain type='kvm'>
  <name>{name}</name>
  <memory unit='b'>{memory}</memory>
  <vcpu>{cores}</vcpu>
  <metadata>
    <vmregistry:vmregistry xmlns:vmregistry='urn:vmregistry:metadata:1.0'>
      <vmregistry:ip>{ip}</vmregistry:ip>
    </vmregistry:vmregistry>
  </metadata>
  <devices>
    <disk type='block' device='disk'>
      <source dev='{disk_path}'/>
      <target dev='vda' bus='virtio'/>
    </disk>
    <interface type='network'>
      <source network='default'/>
    </interface>
  </devices>
</domain>
"""


@pytest.fixture
def calls():
    """Ordered log of every backend call made by the fakes."""
    return []


@pytest.fixture
def compute(calls):
    return FakeCompute(calls)


@pytest.fixture
def storage(calls):
    return FakeStorage(calls)


@pytest.fixture
def dns(calls):
    return FakeDns(calls)


@pytest.fixture
def subnet():
    return parse_subnet("10.0.0.0/24")


@pytest.fixture
def template():
    return DomainTemplate(TEMPLATE)


@pytest.fixture
def controller(compute, storage, dns, subnet, template):
    return VMController(compute, storage, dns, subnet, template, rng=random.Random(1234))
