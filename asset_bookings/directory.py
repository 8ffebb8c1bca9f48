# ============================================================
# directory.py — Asset/employee directory client
# ------------------------------------------------------------
# The inventory service owns assets and employees. Bookings
# only read existence and the pool flag, and write two fields
# of NON-pool assets: the assigned employee and the defective
# status. A pool asset is never written from here.
#
# Callers that already looked the asset up pass its pool flag
# to the write methods, so one operation costs one GET.
# ============================================================
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from asset_bookings import config
from asset_bookings.errors import PoolAssetWriteRefused, StorageFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetRecord:
    asset_id: str
    is_pool: bool


class AssetDirectory(Protocol):
    def lookup_asset(self, asset_id: str) -> Optional[AssetRecord]: ...

    def asset_exists(self, asset_id: str) -> bool: ...

    def is_pool_asset(self, asset_id: str) -> bool: ...

    def set_asset_assignment(
        self, asset_id: str, holder_id: Optional[str], is_pool: Optional[bool] = None
    ) -> None: ...

    def flag_asset_defective(self, asset_id: str, is_pool: Optional[bool] = None) -> None: ...


class HttpAssetDirectory:
    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None,
                 timeout: Optional[float] = None):
        self.client = client or httpx.Client(
            base_url=base_url or config.DIRECTORY_URL,
            timeout=timeout or config.HTTP_TIMEOUT,
        )

    def _fetch(self, asset_id: str) -> Optional[dict]:
        try:
            r = self.client.get(f"/v1/assets/{asset_id}")
            if r.status_code == 404:
                return None
            r.raise_for_status()
            return r.json()
        except httpx.HTTPError as e:
            logger.error("directory lookup for asset %s failed: %s", asset_id, e)
            raise StorageFailure(f"directory unavailable: {e}") from e

    def _patch(self, asset_id: str, fields: dict, is_pool: Optional[bool]):
        if is_pool is None:
            is_pool = self.is_pool_asset(asset_id)
        if is_pool:
            raise PoolAssetWriteRefused(asset_id)
        try:
            r = self.client.patch(f"/v1/assets/{asset_id}", json=fields)
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("directory update of asset %s failed: %s", asset_id, e)
            raise StorageFailure(f"directory unavailable: {e}") from e

    def lookup_asset(self, asset_id: str) -> Optional[AssetRecord]:
        asset = self._fetch(asset_id)
        if asset is None:
            return None
        return AssetRecord(asset_id, bool(asset.get("is_pool_device")))

    def asset_exists(self, asset_id: str) -> bool:
        return self.lookup_asset(asset_id) is not None

    def is_pool_asset(self, asset_id: str) -> bool:
        asset = self.lookup_asset(asset_id)
        return bool(asset and asset.is_pool)

    def set_asset_assignment(self, asset_id: str, holder_id: Optional[str],
                             is_pool: Optional[bool] = None):
        self._patch(asset_id, {"employee_id": holder_id}, is_pool)

    def flag_asset_defective(self, asset_id: str, is_pool: Optional[bool] = None):
        self._patch(asset_id, {"status": "defective"}, is_pool)

    def close(self):
        self.client.close()
