from .config import ReaderConfig
from .errors import (
    BionicError,
    InvalidPackage,
    MalformedChapterMarkup,
    MissingContainerDescriptor,
    MissingManifest,
    MissingRootDescriptor,
    NoReadableChapters,
    NotAZipArchive,
    ResourceReleased,
    SessionClosed,
    UnresolvedResource,
)
from .export import export_filename, export_package, write_export
from .markup import transform_fragment, transform_markup
from .navigator import ChapterNavigator, render_chapter
from .package import ChapterRecord, PackageSession, SessionManager, open_package, open_package_file
from .resources import ResourceHandle, ResourceTable, require_resource, resolve_resource
from .text import BionicStyle, BionicWord, convert_to_bionic

__all__ = [
    "ReaderConfig",
    "BionicError",
    "InvalidPackage",
    "NotAZipArchive",
    "MissingContainerDescriptor",
    "MissingRootDescriptor",
    "MissingManifest",
    "NoReadableChapters",
    "UnresolvedResource",
    "MalformedChapterMarkup",
    "SessionClosed",
    "ResourceReleased",
    "convert_to_bionic",
    "BionicStyle",
    "BionicWord",
    "transform_fragment",
    "transform_markup",
    "ResourceHandle",
    "ResourceTable",
    "require_resource",
    "resolve_resource",
    "ChapterRecord",
    "PackageSession",
    "SessionManager",
    "open_package",
    "open_package_file",
    "export_package",
    "export_filename",
    "write_export",
    "ChapterNavigator",
    "render_chapter",
]
