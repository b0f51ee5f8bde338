# core/__init__.py

from . import common_types
from . import exceptions
from . import utils
from . import orientation
from . import geometry

# Define what gets imported with 'from quick_quote.core import *'
__all__ = [
    "common_types",
    "exceptions",
    "utils",
    "orientation",
    "geometry",
]
