"""Exceptions raised by the VM registry."""

from typing import Iterable, Optional


class RegistryError(Exception):
    """Base exception for all vm-registry errors."""

    status_code = 500


class InvalidArgument(RegistryError):
    """Missing or malformed request field."""

    status_code = 400


class NotFound(RegistryError):
    """No VM matches the lookup criterion."""

    status_code = 404


class LookupFailed(RegistryError):
    """The hypervisor has no domain with the requested name."""

    status_code = 404


class BackendUnavailable(RegistryError):
    """A backend could not be reached or refused to enumerate."""

    status_code = 503


class BackendError(RegistryError):
    """
    A single backend call failed.

    Raised by the compute, storage and DNS adapters; the native exception
    (libvirtError, CalledProcessError, RequestException, ...) is chained as
    ``__cause__``.
    """

    def __init__(self, backend: str, call: str, message: str) -> None:
        super().__init__(f"{backend}.{call}: {message}")
        self.backend = backend
        self.call = call


class DomainNotFound(BackendError):
    """The hypervisor answered, and it has no domain by that name."""


class MalformedDomainXML(RegistryError):
    """Domain XML could not be decoded."""


class TemplateError(RegistryError):
    """The domain template could not be loaded or rendered."""


class StepFailed(RegistryError):
    """
    A step of a multi-backend operation failed.

    ``committed`` lists the steps that completed before the failure. Nothing
    is rolled back, so this is what an operator has to reconcile by hand.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        step: str,
        committed: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.step = step
        self.committed = tuple(committed or ())


class DomainDescriptionUnavailable(StepFailed):
    """Domain XML could not be read or carries no IP."""


class AddressPoolExhausted(StepFailed):
    """Every generated candidate address was already taken."""

    status_code = 503


class StorageProvisioningFailed(StepFailed):
    pass


class DomainCreationFailed(StepFailed):
    pass


class DNSUpdateFailed(StepFailed):
    pass


class DomainRemovalFailed(StepFailed):
    pass


class StorageRemovalFailed(StepFailed):
    pass


class OperationCancelled(StepFailed):
    """The caller's deadline passed or it cancelled between two steps."""

    status_code = 504
