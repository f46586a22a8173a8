from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


class ServiceConfigError(RuntimeError):
    pass


class EditorBusyError(RuntimeError):
    """Raised when an instruction arrives while a remote refinement is still outstanding."""


class EditorClosedError(RuntimeError):
    pass


class SessionNotFoundError(LookupError):
    pass


class SectionNotFoundError(LookupError):
    pass


class PageNotFoundError(LookupError):
    pass


class InvalidEditError(ValueError):
    """A direct edit or instruction that is malformed before it reaches the document."""


RemoteRejectionKind = Literal["quota", "auth", "malformed", "rejected"]


@dataclass
class RemoteGenerationError(RuntimeError):
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        status = f" status={self.status_code}" if self.status_code is not None else ""
        return f"{self.message}{status}".strip()


@dataclass
class RemoteUnavailableError(RemoteGenerationError):
    """Network or transport failure talking to the generation backend."""


@dataclass
class RemoteRejectedError(RemoteGenerationError):
    kind: RemoteRejectionKind = "rejected"

    def __str__(self) -> str:
        return f"{super().__str__()} kind={self.kind}"


@dataclass
class PersistenceError(RuntimeError):
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        status = f" status={self.status_code}" if self.status_code is not None else ""
        return f"{self.message}{status}".strip()


@dataclass
class PersistenceUnauthorizedError(PersistenceError):
    pass


@dataclass
class PersistenceFailedError(PersistenceError):
    pass


class AssetDeleteFailedError(RuntimeError):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to delete asset {url}: {reason}")
        self.url = url
        self.reason = reason
