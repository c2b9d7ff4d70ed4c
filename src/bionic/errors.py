from __future__ import annotations


class BionicError(Exception):
    """Base class for every error raised by the bionic package."""


class InvalidPackage(BionicError):
    """Raised when an archive cannot be opened as a readable e-book."""

    step = "open"
    is_empty = False

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(f"Invalid EPUB ({self.step}): {message}")
        self.reason = message


class NotAZipArchive(InvalidPackage):
    step = "unpack"


class MissingContainerDescriptor(InvalidPackage):
    step = "container"


class MissingRootDescriptor(InvalidPackage):
    step = "rootfile"


class MissingManifest(InvalidPackage):
    step = "manifest"


class NoReadableChapters(InvalidPackage):
    """The package is structurally valid but holds no substantive chapter."""

    step = "chapters"
    is_empty = True

    def __init__(self, message: str = "No readable chapters found in EPUB", *, path: str | None = None) -> None:
        super().__init__(message, path=path)


class UnresolvedResource(BionicError):
    def __init__(self, reference: str, resolved: str | None = None) -> None:
        self.reference = reference
        self.resolved = resolved
        super().__init__(f"Resource not found: {reference} (resolved as {resolved})")


class MalformedChapterMarkup(BionicError):
    def __init__(self, path: str, detail: str = "") -> None:
        self.path = path
        message = f"Malformed chapter markup: {path}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SessionClosed(BionicError):
    """Raised when a closed package session is used."""


class ResourceReleased(BionicError):
    """Raised when the payload of a released resource handle is read."""


def describe_package_error(exc: InvalidPackage) -> str:
    if exc.is_empty:
        return f"No content found: {exc.reason}. The book has no readable chapters."
    return f"Not a valid EPUB package: {exc}. Please choose a different file."
