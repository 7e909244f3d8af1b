"""
Synthetic Data Generator

Generates a realistic camera and lens catalog plus popularity traffic for
local development and demos.
Includes:
- Cameras and lenses across a handful of brands
- Long-tailed event traffic (a few items get most of the attention)
- Repeat visitors, logged-in users and some crawler noise
"""

import random
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

import numpy as np
import polars as pl
from faker import Faker

from gear_popularity.clock import utc_now
from gear_popularity.database.models import EventType, ItemType


# =============================================================================
# CONFIGURATION
# =============================================================================

BRANDS = [
    ("canon", "Canon"),
    ("nikon", "Nikon"),
    ("sony", "Sony"),
    ("fujifilm", "Fujifilm"),
    ("panasonic", "Panasonic"),
    ("olympus", "OM System"),
    ("leica", "Leica"),
    ("sigma", "Sigma"),
    ("tamron", "Tamron"),
]

CAMERA_LINES = ["R", "Z", "A7", "X-T", "GH", "OM-", "Q", "fp", "EOS M"]
LENS_FOCALS = ["14mm", "24mm", "35mm", "50mm", "85mm", "24-70mm", "70-200mm", "100-400mm"]
LENS_APERTURES = ["f/1.2", "f/1.4", "f/1.8", "f/2.8", "f/4"]

# Relative frequency of each event type in generated traffic
EVENT_MIX = [
    (EventType.VIEW, 0.86),
    (EventType.WISHLIST_ADD, 0.05),
    (EventType.COMPARE_ADD, 0.05),
    (EventType.OWNER_ADD, 0.03),
    (EventType.REVIEW_SUBMIT, 0.01),
]

HUMAN_USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148",
]
CRAWLER_USER_AGENTS = [
    "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
    "facebookexternalhit/1.1",
    "python-requests/2.31",
]


# =============================================================================
# GENERATORS
# =============================================================================

class GearCatalogGenerator:
    """Generate a camera and lens catalog"""

    def __init__(self, seed: Optional[int] = 42, lens_share: float = 0.6):
        self.rng = random.Random(seed)
        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)
        self.lens_share = lens_share

    def _camera_name(self, brand_name: str) -> str:
        line = self.rng.choice(CAMERA_LINES)
        return f"{brand_name} {line}{self.rng.randint(1, 9)}{self.rng.choice(['', ' II', ' III', 's', 'R'])}"

    def _lens_name(self, brand_name: str) -> str:
        focal = self.rng.choice(LENS_FOCALS)
        aperture = self.rng.choice(LENS_APERTURES)
        return f"{brand_name} {focal} {aperture} {self.fake.lexify('??').upper()}"

    def generate(self, n: int = 200) -> pl.DataFrame:
        """Generate n catalog items with unique ids and slugs"""
        items = []
        slugs = set()

        for index in range(n):
            brand_id, brand_name = self.rng.choice(BRANDS)
            item_type = ItemType.LENS if self.rng.random() < self.lens_share else ItemType.CAMERA
            name = (
                self._lens_name(brand_name)
                if item_type == ItemType.LENS
                else self._camera_name(brand_name)
            )

            base_slug = self.fake.slug(name) or "item"
            slug, suffix = base_slug, 1
            while slug in slugs:
                suffix += 1
                slug = f"{base_slug}-{suffix}"
            slugs.add(slug)

            items.append({
                "id": f"gear-{index:05d}",
                "slug": slug,
                "name": name,
                "item_type": item_type.value,
                "brand_id": brand_id,
                "brand_name": brand_name,
                "created_at": self.fake.date_time_between(start_date="-3y", end_date="-30d"),
            })

        return pl.DataFrame(items, infer_schema_length=None)


class PopularityEventGenerator:
    """
    Generate popularity events for an existing catalog.

    Item attention follows a Zipf-like distribution so that rankings have a
    clear head and a long tail. A share of visitors come back to the same
    item on the same day, which exercises deduplication.
    """

    def __init__(
        self,
        catalog_df: pl.DataFrame,
        seed: Optional[int] = 42,
        zipf_exponent: float = 1.1,
        logged_in_share: float = 0.35,
        crawler_share: float = 0.05,
    ):
        self.item_ids: List[str] = catalog_df["id"].to_list()
        if not self.item_ids:
            raise ValueError("Catalog is empty")

        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)
        self.logged_in_share = logged_in_share
        self.crawler_share = crawler_share

        ranks = np.arange(1, len(self.item_ids) + 1, dtype=float)
        weights = 1.0 / np.power(ranks, zipf_exponent)
        self.item_probabilities = weights / weights.sum()

        self.user_pool = [f"user-{i:05d}" for i in range(max(len(self.item_ids) * 2, 50))]
        self.visitor_pool = [str(uuid.UUID(int=self.rng.getrandbits(128))) for _ in range(500)]

    def generate(
        self,
        n: int = 5000,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pl.DataFrame:
        """Generate n events with timestamps spread uniformly over [start, end)"""
        end = end or utc_now()
        start = start or end - timedelta(days=30)
        span_seconds = max((end - start).total_seconds(), 1.0)

        item_indices = self.np_rng.choice(len(self.item_ids), size=n, p=self.item_probabilities)
        type_choices = self.np_rng.choice(
            len(EVENT_MIX), size=n, p=[share for _, share in EVENT_MIX]
        )
        offsets = self.np_rng.uniform(0, span_seconds, size=n)

        events = []
        for item_index, type_index, offset in zip(item_indices, type_choices, offsets):
            event_type = EVENT_MIX[int(type_index)][0]
            item_id = self.item_ids[int(item_index)]

            is_crawler = self.rng.random() < self.crawler_share
            user_id = None
            if not is_crawler and self.rng.random() < self.logged_in_share:
                user_id = self.rng.choice(self.user_pool)

            compared_with = None
            if event_type == EventType.COMPARE_ADD and len(self.item_ids) > 1:
                compared_with = self.rng.choice([i for i in self.item_ids if i != item_id])

            events.append({
                "item_id": item_id,
                "event_type": event_type.value,
                "user_id": user_id,
                "visitor_id": self.rng.choice(self.visitor_pool),
                "compared_with": compared_with,
                "user_agent": self.rng.choice(
                    CRAWLER_USER_AGENTS if is_crawler else HUMAN_USER_AGENTS
                ),
                "created_at": start + timedelta(seconds=float(offset)),
            })

        return pl.DataFrame(events, infer_schema_length=None).sort("created_at")
