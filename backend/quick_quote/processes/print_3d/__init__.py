# processes/print_3d/__init__.py

from . import overhang
from . import slicer
from .slicer import SlicerResult, estimate
from .overhang import analyze, analyze_in_worker

__all__ = [
    "overhang",
    "slicer",
    "SlicerResult",
    "estimate",
    "analyze",
    "analyze_in_worker",
]
