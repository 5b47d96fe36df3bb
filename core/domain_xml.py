import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Union
from xml.sax.saxutils import escape

from core.errors import MalformedDomainXML, TemplateError
from core.models import DomainInfo

# Local names of the custom metadata element holding the VM's IP.
# "mlp" is what older domains were defined with.
METADATA_ELEMENTS = ("vmregistry", "mlp")


def _local_name(tag: str) -> str:
    # ElementTree spells namespaced tags as "{uri}local"
    return tag.rsplit("}", 1)[-1]


def _extract_macs(root: ET.Element) -> tuple:
    macs = []
    for iface in root.findall("./devices/interface"):
        mac = iface.find("mac")
        macs.append(mac.get("address", "") if mac is not None else "")
    return tuple(macs)


def _extract_ip(root: ET.Element) -> str:
    metadata = root.find("metadata")
    if metadata is None:
        return ""
    for entry in metadata:
        if _local_name(entry.tag) not in METADATA_ELEMENTS:
            continue
        for child in entry:
            if _local_name(child.tag) == "ip":
                return (child.text or "").strip()
    return ""


def parse_domain_xml(domain_xml: str) -> DomainInfo:
    """
    Decode a libvirt domain description.

    Returns the interface MAC addresses in document order and the IP stored
    in the registry's metadata element. A domain that has not booted yet can
    lack both, so an empty result is not an error; only a document that
    cannot be parsed at all raises MalformedDomainXML.
    """
    try:
        root = ET.fromstring(domain_xml)
    except (ET.ParseError, TypeError) as e:
        raise MalformedDomainXML(f"failed to parse domain xml: {e}") from e

    return DomainInfo(mac_addresses=_extract_macs(root), ip=_extract_ip(root))


class DomainTemplate:
    """
    Domain XML template filled in with ``str.format``.

    Placeholders: {name} {memory} {cores} {disk_path} {ip}
    """

    def __init__(self, text: str) -> None:
        self.text = text

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DomainTemplate":
        try:
            return cls(Path(path).read_text(encoding="utf-8"))
        except OSError as e:
            raise TemplateError(f"failed to load vm template {path}: {e}") from e

    def render(self, name: str, memory: int, cores: int, disk_path: str, ip: str) -> str:
        try:
            rendered = self.text.format(
                name=escape(name),
                memory=int(memory),
                cores=int(cores),
                disk_path=escape(disk_path),
                ip=escape(ip),
            )
        except (KeyError, IndexError, ValueError) as e:
            raise TemplateError(f"failed to render domain template: {e!r}") from e

        try:
            ET.fromstring(rendered)
        except ET.ParseError as e:
            raise TemplateError(f"rendered domain template is not valid xml: {e}") from e

        return rendered
