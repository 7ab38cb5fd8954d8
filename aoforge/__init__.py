"""aoforge: supervise and schedule AO processes from the command line."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("aoforge")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
