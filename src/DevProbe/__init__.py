"""DevProbe: local tool-invocation server for Swift and Xcode developer tooling."""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _get_version

try:
    __version__ = _get_version("devprobe")
except PackageNotFoundError:
    __version__ = "0.3.0"

__all__ = ["__version__"]
