"""
Synthetic Data Module
"""
from .generators import GearCatalogGenerator, PopularityEventGenerator

__all__ = ["GearCatalogGenerator", "PopularityEventGenerator"]
