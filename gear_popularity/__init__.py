"""
Gear Popularity Engine

Event recording, daily rollups and trending rankings for a camera and lens catalog.
"""

__version__ = "1.0.0"
