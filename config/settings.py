import os
from pathlib import Path

# -----------------------------
# Base paths
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent  # project root: vm-registry/

# -----------------------------
# Logging
# -----------------------------
LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "log")))
LOG_FILE = LOG_DIR / "vm-registry.log"

# -----------------------------
# Hypervisor / libvirt
# -----------------------------
# common examples:
#   qemu:///system                  (KVM/QEMU on host)
#   qemu+ssh://root@host/system     (remote KVM over ssh)
LIBVIRT_URI = os.getenv("LIBVIRT_URI", "qemu:///system")

# Domain XML template, rendered with str.format. Placeholders:
#   {name} {memory} {cores} {disk_path} {ip}
VM_TEMPLATE_FILE = os.getenv(
    "VM_TEMPLATE_FILE",
    str(BASE_DIR / "config" / "domain-template.xml"),
)

# -----------------------------
# Networking
# -----------------------------
# Subnet used for VM address generation (CIDR)
VM_NET = os.getenv("VM_NET", "10.0.0.0/24")

# -----------------------------
# Storage / LVM
# -----------------------------
VM_VOLUME_GROUP = os.getenv("VM_VOLUME_GROUP", "vms")
LVM_MIRRORS = int(os.getenv("LVM_MIRRORS", "0"))  # 0 disables mirroring

# -----------------------------
# DNS / PowerDNS
# -----------------------------
PDNS_API_URL = os.getenv("PDNS_API_URL", "http://localhost:8081")
PDNS_SERVER = os.getenv("PDNS_SERVER", "localhost")
PDNS_ZONE = os.getenv("PDNS_ZONE", "vm.local")
PDNS_API_KEY = os.getenv("PDNS_API_KEY", "")
PDNS_TIMEOUT = float(os.getenv("PDNS_TIMEOUT", "10"))
DNS_RECORD_TTL = int(os.getenv("DNS_RECORD_TTL", "300"))

# -----------------------------
# Metrics / monitoring
# -----------------------------
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() == "true"

# -----------------------------
# Misc
# -----------------------------
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
