import re
import subprocess
from typing import List

from core.errors import BackendError
from core.logger import log_event
from core.metrics import observe_backend_call

# Characters lvm2 accepts in a logical volume name.
_LV_NAME_RE = re.compile(r"^[A-Za-z0-9+_.][A-Za-z0-9+_.-]*$")


def is_valid_volume_name(name: str) -> bool:
    """
    True if ``name`` can only ever refer to a volume inside the volume group.
    Rejects path separators, "." and "..", and names lvm reads as options.
    """
    return bool(name) and name not in (".", "..") and _LV_NAME_RE.match(name) is not None


class LvmStorage:
    """
    VM disks as logical volumes in a single volume group.

    One LV per VM, named after the VM, tagged "vm". Source images are LVs in
    the same group and are copied block for block onto the new volume.
    """

    def __init__(self, volume_group: str, mirrors: int = 0) -> None:
        self.volume_group = volume_group
        self.mirrors = mirrors

    def _run(self, call: str, cmd: List[str]) -> None:
        log_event(f"[storage] Running: {' '.join(cmd)}")
        with observe_backend_call("lvm", call):
            try:
                subprocess.run(cmd, capture_output=True, text=True, check=True)
            except FileNotFoundError as e:
                raise BackendError("lvm", call, f"{cmd[0]} not found: {e}") from e
            except subprocess.CalledProcessError as e:
                err = e.stderr.strip() if e.stderr else str(e)
                raise BackendError("lvm", call, err) from e

    @staticmethod
    def _check_name(call: str, name: str) -> None:
        if not is_valid_volume_name(name):
            raise BackendError("lvm", call, f"invalid logical volume name {name!r}")

    def block_device_path(self, name: str) -> str:
        return f"/dev/{self.volume_group}/{name}"

    def create_volume(self, name: str, size: int) -> None:
        self._check_name("create_volume", name)
        cmd = [
            "lvcreate",
            "--yes",
            "-L",
            f"{size}b",
            "-n",
            name,
            "--addtag",
            "vm",
        ]
        if self.mirrors > 0:
            cmd += ["-m", str(self.mirrors)]
        cmd.append(self.volume_group)
        self._run("create_volume", cmd)
        log_event(f"[storage] Created volume {self.volume_group}/{name} ({size} bytes)")

    def clone_volume(self, source_name: str, dest_name: str) -> None:
        self._check_name("clone_volume", source_name)
        self._check_name("clone_volume", dest_name)
        cmd = [
            "dd",
            f"if={self.block_device_path(source_name)}",
            f"of={self.block_device_path(dest_name)}",
            "bs=4M",
            "conv=fsync",
        ]
        self._run("clone_volume", cmd)
        log_event(f"[storage] Cloned {source_name} into {self.volume_group}/{dest_name}")

    def remove_volume(self, name: str) -> None:
        self._check_name("remove_volume", name)
        self._run("remove_volume", ["lvremove", "-f", f"{self.volume_group}/{name}"])
        log_event(f"[storage] Removed volume {self.volume_group}/{name}")
