# processes/__init__.py

# Expose key submodules
from . import print_3d

__all__ = [
    "print_3d",
]
