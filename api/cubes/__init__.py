"""
Cube definitions and the demo schema they are declared over.
"""

from .definitions import all_cubes
from .models import CubeDefinition, Dimension, Join, Measure, organisation_filter
from .schema import schema

__all__ = [
    "CubeDefinition",
    "Dimension",
    "Join",
    "Measure",
    "all_cubes",
    "organisation_filter",
    "schema",
]
