# quick_quote/__init__.py

# Expose the main sub-packages at package level
from . import core
from . import processes
from . import services

__all__ = [
    "core",
    "processes",
    "services",
]
