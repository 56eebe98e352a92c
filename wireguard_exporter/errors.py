from __future__ import annotations


class WireGuardError(Exception):
    """Base class for failures while reading one WireGuard interface."""

    def __init__(self, interface: str, message: str) -> None:
        super().__init__(f"{interface}: {message}")
        self.interface = interface
        self.message = message

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class InterfaceNotFound(WireGuardError):
    pass


class PermissionDenied(WireGuardError):
    pass


class QueryFailed(WireGuardError):
    pass


class ParseError(WireGuardError):
    pass


class RegistryError(RuntimeError):
    """Raised when a cycle handle is used out of order."""
