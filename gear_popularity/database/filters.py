"""
Catalog filters applied through a join on ``gear_items``
"""

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import Select

from gear_popularity.database.models import GearItem, ItemType


@dataclass(frozen=True)
class CatalogFilter:
    """Optional item type and brand restriction"""
    item_type: Optional[ItemType] = None
    brand_id: Optional[str] = None

    @classmethod
    def of(cls, item_type: Optional[Union[ItemType, str]] = None, brand_id: Optional[str] = None) -> "CatalogFilter":
        return cls(
            item_type=ItemType(item_type) if item_type else None,
            brand_id=brand_id or None,
        )

    @property
    def is_empty(self) -> bool:
        return self.item_type is None and self.brand_id is None

    def apply(self, query: Select, item_id_column) -> Select:
        """Join the catalog and restrict ``query``; unfiltered queries are left alone."""
        if self.is_empty:
            return query
        query = query.join(GearItem, GearItem.id == item_id_column)
        if self.item_type is not None:
            query = query.where(GearItem.item_type == self.item_type)
        if self.brand_id is not None:
            query = query.where(GearItem.brand_id == self.brand_id)
        return query

    def cache_key(self) -> str:
        item_type = self.item_type.value if self.item_type else "all"
        return f"{item_type}:{self.brand_id or 'all'}"
