from __future__ import annotations


class WardenError(Exception):
    """Base class for every error raised by warden."""


class BootError(WardenError):
    """Fatal: the boot sequence cannot continue."""

    def __init__(self, message: str, service_name: str | None = None):
        super().__init__(message)
        self.service_name = service_name


class ImagePullError(BootError):
    pass


class ContainerStartError(BootError):
    pass


class HealthTimeoutError(BootError):
    pass


class BootCancelled(BootError):
    """Raised when a shutdown is requested while a boot step is in flight."""


class UnknownServiceError(WardenError):
    pass


class DuplicateServiceError(WardenError):
    pass


class CircularDependencyError(WardenError):
    pass


class InvalidConfigError(WardenError):
    pass
