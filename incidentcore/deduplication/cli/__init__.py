"""
Command-line interface for the incident deduplication engine.
"""

from .main import main
from .ui_components import UIComponents

__all__ = [
    'main',
    'UIComponents',
]
