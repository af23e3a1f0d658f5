"""inkwell - compile Markdown collections into tables, objects and typed schemas."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("inkwell")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
