from dataclasses import dataclass
from enum import Enum


class FindBy(str, Enum):
    """Lookup criterion for ``find``."""

    UNSPECIFIED = "unspecified"
    IP = "ip"
    MAC = "mac"


@dataclass(frozen=True)
class VMRecord:
    """Registry view of a VM, rebuilt from hypervisor state on every read."""

    name: str
    ip: str
    mac: str

    def to_dict(self) -> dict:
        return {"name": self.name, "ip": self.ip, "mac": self.mac}


@dataclass(frozen=True)
class CreateRequest:
    name: str
    memory: int  # bytes
    cores: int
    size: int  # bytes
    source_image: str


@dataclass(frozen=True)
class DomainInfo:
    """The two things the registry reads out of a domain XML document."""

    mac_addresses: tuple
    ip: str
