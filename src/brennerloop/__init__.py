"""
Brennerloop distribution import namespace.

This package re-exports the core `falsification_core` package so that
`import brennerloop` gives the same API as the core.
"""

from importlib.metadata import PackageNotFoundError, version

# src/brennerloop/__init__.py
from falsification_core import *  # noqa: F401,F403
from falsification_core import __all__ as _core_all

try:
    __version__ = version("brennerloop")
except PackageNotFoundError:
    __version__ = "0+unknown"

__all__ = ["__version__", *_core_all]
