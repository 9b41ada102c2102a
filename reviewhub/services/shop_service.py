"""
Shop lookups served through the read-through cache.
"""

import logging
from typing import List, Optional

from ..cache.utils import CacheKeyPrefix, TTLPreset
from ..database.config import DatabaseConfig
from ..database.repository import ShopRepository
from ..models.enums import CacheStrategy
from ..models.shop import ShopModel, ShopTypeModel
from .cache_client import CacheClient

logger = logging.getLogger(__name__)


class ShopService:
    """Shop reads, cache warm-up and cache-invalidating updates."""

    def __init__(
        self,
        cache_client: CacheClient,
        db_config: DatabaseConfig,
        shop_ttl: int = int(TTLPreset.SHOP),
        shop_type_ttl: int = int(TTLPreset.SHOP_TYPE),
    ):
        self.cache_client = cache_client
        self.cache = cache_client.cache
        self.repository = ShopRepository(db_config)
        self.shop_ttl = shop_ttl
        self.shop_type_ttl = shop_type_ttl

    def query_by_id(self, shop_id: int, strategy: CacheStrategy = CacheStrategy.PASS_THROUGH) -> Optional[ShopModel]:
        """
        Look up a shop.

        Logical-expiry reads only see shops that were warmed with warm_up.
        """
        return self.cache_client.read(
            CacheKeyPrefix.SHOP,
            shop_id,
            self.repository.get_by_id,
            self.shop_ttl,
            strategy,
            ShopModel,
        )

    def warm_up(self, shop_id: int, expire_seconds: float) -> Optional[ShopModel]:
        """Load a shop from the store and cache it with logical expiry."""
        shop = self.repository.get_by_id(shop_id)
        if shop is None:
            logger.warning(f"Cannot warm shop {shop_id}: not in the store")
            return None

        self.cache_client.set_with_logical_expire(self.cache.keys.shop_key(shop_id), shop, expire_seconds)
        logger.info(f"Warmed shop {shop_id} (logical expiry in {expire_seconds}s)")
        return shop

    def update(self, shop: ShopModel) -> bool:
        """Write the store first, then drop the cached copy."""
        if not self.repository.update(shop):
            return False

        self.cache.delete(self.cache.keys.shop_key(shop.id))
        return True

    def query_type_list(self) -> List[ShopTypeModel]:
        """All shop types ordered for display, cached as one list."""
        return self.cache_client.query_with_pass_through(
            CacheKeyPrefix.SHOP_TYPE,
            None,
            lambda _: self.repository.list_types(),
            self.shop_type_ttl,
            List[ShopTypeModel],
        )
