import html
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config.settings import (
    DNS_RECORD_TTL,
    LIBVIRT_URI,
    LVM_MIRRORS,
    METRICS_ENABLED,
    PDNS_API_KEY,
    PDNS_API_URL,
    PDNS_SERVER,
    PDNS_TIMEOUT,
    PDNS_ZONE,
    VM_NET,
    VM_TEMPLATE_FILE,
    VM_VOLUME_GROUP,
)
from core.compute import LibvirtCompute
from core.context import OperationContext
from core.dns import DnsClient
from core.domain_xml import DomainTemplate
from core.errors import RegistryError, StepFailed
from core.logger import log_event
from core.metrics import REQUEST_COUNT, REQUEST_LATENCY, record_vm_created, record_vm_destroyed
from core.network import parse_subnet
from core.storage import LvmStorage
from core.vm_controller import VMController
from schemas.vm_schema import VMCreateSchema, VMListSchema, VMSchema

STATUS_PAGE = """<html>
<body>
  <h1>vmregistry</h1>
  <table border=1>
    <tr>
      <th>Name</th>
      <th>IP</th>
      <th>MAC</th>
    </tr>
{rows}
  </table>
</body>
</html>
"""


def build_controller() -> VMController:
    """
    Wire the controller to the real backends using config/settings.py.
    """
    subnet = parse_subnet(VM_NET)
    template = DomainTemplate.from_file(VM_TEMPLATE_FILE)
    compute = LibvirtCompute.open(LIBVIRT_URI)
    storage = LvmStorage(VM_VOLUME_GROUP, mirrors=LVM_MIRRORS)
    dns = DnsClient.for_zone(
        PDNS_API_URL,
        PDNS_ZONE,
        PDNS_API_KEY,
        server=PDNS_SERVER,
        ttl=DNS_RECORD_TTL,
        timeout=PDNS_TIMEOUT,
    )
    log_event(f"[app] Controller ready (net={subnet}, vg={VM_VOLUME_GROUP}, zone={dns.domain})")
    return VMController(compute, storage, dns, subnet, template)


def create_app(controller: Optional[VMController] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.vm_controller is None
        if owned:
            app.state.vm_controller = build_controller()
        yield
        if owned:
            app.state.vm_controller.compute.close()
            app.state.vm_controller.dns.client.close()
            app.state.vm_controller = None

    app = FastAPI(
        title="VM Registry API",
        description=(
            "Create and destroy virtual machines across libvirt, LVM and PowerDNS.\n\n"
            "- Disks are logical volumes cloned from source image volumes\n"
            "- Addresses are drawn at random from the configured subnet\n"
            "- Every VM gets an A record in the configured zone"
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.vm_controller = controller

    def get_controller() -> VMController:
        return app.state.vm_controller

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        endpoint = request.url.path
        method = request.method

        if not METRICS_ENABLED or endpoint == "/metrics":
            return await call_next(request)

        start_time = time.time()
        try:
            response = await call_next(request)
            return response
        finally:
            duration = time.time() - start_time
            REQUEST_COUNT.labels(method=method, endpoint=endpoint).inc()
            REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration)

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        content = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, StepFailed):
            content["step"] = exc.step
            content["committed"] = list(exc.committed)
        log_event(f"[app] {request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc}")
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.get("/", tags=["System"])
    def root():
        return {
            "message": "VM Registry API is running",
            "version": app.version,
        }

    @app.post("/vms", tags=["VM Management"], status_code=201, response_model=VMSchema)
    def create_vm(payload: VMCreateSchema, x_request_timeout: Optional[float] = Header(default=None)):
        vm = get_controller().create_vm(payload.to_request(), OperationContext.with_timeout(x_request_timeout))
        record_vm_created()
        return vm.to_dict()

    @app.delete("/vms/{name}", tags=["VM Management"])
    def destroy_vm(name: str, x_request_timeout: Optional[float] = Header(default=None)):
        get_controller().destroy_vm(name, OperationContext.with_timeout(x_request_timeout))
        record_vm_destroyed()
        return {"status": "destroyed", "name": name}

    @app.get("/vms", tags=["VM Management"], response_model=VMListSchema)
    def list_vms(x_request_timeout: Optional[float] = Header(default=None)):
        vms = get_controller().list_vms(OperationContext.with_timeout(x_request_timeout))
        return {"vms": [vm.to_dict() for vm in vms]}

    @app.get("/vms/find", tags=["VM Management"], response_model=VMSchema)
    def find_vm(
        by: Optional[str] = None,
        value: str = "",
        x_request_timeout: Optional[float] = Header(default=None),
    ):
        vm = get_controller().find_vm(by, value, OperationContext.with_timeout(x_request_timeout))
        return vm.to_dict()

    @app.get("/status", tags=["System"], response_class=HTMLResponse)
    def status_page():
        rows = "\n".join(
            "    <tr><td>{}</td><td>{}</td><td>{}</td></tr>".format(
                html.escape(vm.name), html.escape(vm.ip), html.escape(vm.mac)
            )
            for vm in get_controller().list_vms()
        )
        return STATUS_PAGE.format(rows=rows)

    @app.get("/metrics", tags=["Monitoring"])
    def metrics():
        if not METRICS_ENABLED:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
