from typing import Any, List

# Try to import libvirt - only needed when talking to a real hypervisor
try:
    import libvirt
    LIBVIRT_AVAILABLE = True
except ImportError:
    libvirt = None
    LIBVIRT_AVAILABLE = False

from core.errors import BackendError, DomainNotFound
from core.logger import log_event
from core.metrics import observe_backend_call


def _libvirt_error_handler(ctx, error):
    """
    Custom libvirt error handler to suppress noisy stderr messages like:
    'Domain not found: no domain with matching name ...'

    Errors still reach us as libvirtError exceptions.
    """
    pass


class LibvirtCompute:
    """
    Compute backend on top of a libvirt connection.

    Domain handles are plain ``libvirt.virDomain`` objects. Every libvirt
    failure is re-raised as BackendError so the controller never has to know
    about libvirt exceptions.
    """

    def __init__(self, conn: Any) -> None:
        # every except clause below names libvirt.libvirtError
        if not LIBVIRT_AVAILABLE:
            raise BackendError("libvirt", "open", "libvirt-python is not installed")
        self.conn = conn

    @classmethod
    def open(cls, uri: str) -> "LibvirtCompute":
        if not LIBVIRT_AVAILABLE:
            raise BackendError("libvirt", "open", "libvirt-python is not installed")
        # Register global libvirt error handler to avoid noisy stderr prints
        libvirt.registerErrorHandler(_libvirt_error_handler, None)
        try:
            conn = libvirt.open(uri)
        except libvirt.libvirtError as e:
            raise BackendError("libvirt", "open", f"failed to connect to {uri}: {e}") from e
        if conn is None:
            raise BackendError("libvirt", "open", f"failed to connect to {uri}")
        log_event(f"[libvirt] Connected to hypervisor via libvirt URI={uri}")
        return cls(conn)

    def close(self) -> None:
        try:
            self.conn.close()
        except libvirt.libvirtError as e:
            log_event(f"[libvirt] Error while closing connection: {e}")

    def _call(self, call: str, fn, *args):
        with observe_backend_call("libvirt", call):
            try:
                return fn(*args)
            except libvirt.libvirtError as e:
                raise BackendError("libvirt", call, str(e)) from e

    def list_domains(self) -> List[Any]:
        return self._call("listAllDomains", self.conn.listAllDomains, 0)

    def domain_name(self, dom) -> str:
        return self._call("name", dom.name)

    def domain_xml(self, dom) -> str:
        return self._call("XMLDesc", dom.XMLDesc, libvirt.VIR_DOMAIN_XML_INACTIVE)

    def lookup_domain(self, name: str):
        try:
            return self._call("lookupByName", self.conn.lookupByName, name)
        except BackendError as e:
            cause = e.__cause__
            if isinstance(cause, libvirt.libvirtError) and cause.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                raise DomainNotFound("libvirt", "lookupByName", str(cause)) from cause
            raise

    def define_domain(self, domain_xml: str):
        dom = self._call("defineXML", self.conn.defineXML, domain_xml)
        if dom is None:
            raise BackendError("libvirt", "defineXML", "failed to define libvirt domain from XML")
        return dom

    def start_domain(self, dom) -> None:
        self._call("create", dom.create)

    def stop_domain(self, dom) -> None:
        # hard power-off, the domain is about to be undefined anyway
        self._call("destroy", dom.destroy)

    def undefine_domain(self, dom) -> None:
        self._call("undefine", dom.undefine)
