"""
Stage-keyed cache for pipeline artifacts.

Each stage of a run stores one JSON document under
`{dataset_hash}:{stage}`; the backing store adds its own instance prefix.
Store failures never propagate: a failed write reports False, a failed
read or lookup behaves like a missing stage.
"""

from typing import Optional, Protocol

from redis.exceptions import RedisError

from releasekit.models.stage_data import Stage
from releasekit.services.redis_client import RedisConnectionError
from releasekit.utils.logging import get_logger


logger = get_logger(__name__)

STORE_ERRORS = (RedisError, RedisConnectionError)


class CacheStore(Protocol):
    """Minimal key/value store interface implemented by RedisClient."""

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...


def stage_key(dataset_hash: str, stage: Stage) -> str:
    return f"{dataset_hash}:{stage.value}"


class StagedCache:
    """Reads and writes one serialized payload per (dataset, stage)."""

    def __init__(self, store: CacheStore, default_ttl: Optional[int] = None):
        self._store = store
        self._default_ttl = default_ttl

    async def write_stage(
        self,
        dataset_hash: str,
        stage: Stage,
        payload: str,
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Persist a stage artifact.

        Returns:
            True if the store acknowledged the write. Store errors, including
            a connection lost after retries, are logged and reported as False.
        """
        key = stage_key(dataset_hash, stage)
        try:
            written = await self._store.set(key, payload, ttl=ttl if ttl is not None else self._default_ttl)
        except STORE_ERRORS as e:
            logger.error(
                f"Failed to write stage {stage.value}: {e}",
                extra={"dataset_hash": dataset_hash, "stage": stage.value},
            )
            return False

        if not written:
            logger.error(
                f"Store rejected write for stage {stage.value}",
                extra={"dataset_hash": dataset_hash, "stage": stage.value},
            )
            return False

        logger.debug(
            f"Stage {stage.value} written ({len(payload)} chars)",
            extra={"dataset_hash": dataset_hash, "stage": stage.value},
        )
        return True

    async def read_stage(self, dataset_hash: str, stage: Stage) -> Optional[str]:
        """Return the stored artifact, or None if it was never written or cannot be read."""
        try:
            return await self._store.get(stage_key(dataset_hash, stage))
        except STORE_ERRORS as e:
            logger.error(
                f"Failed to read stage {stage.value}: {e}",
                extra={"dataset_hash": dataset_hash, "stage": stage.value},
            )
            return None

    async def has_stage(self, dataset_hash: str, stage: Stage) -> bool:
        try:
            return await self._store.exists(stage_key(dataset_hash, stage))
        except STORE_ERRORS as e:
            logger.warning(
                f"Could not check stage {stage.value}, treating it as missing: {e}",
                extra={"dataset_hash": dataset_hash, "stage": stage.value},
            )
            return False

    async def delete_stage(self, dataset_hash: str, stage: Stage) -> bool:
        return await self._store.delete(stage_key(dataset_hash, stage))
