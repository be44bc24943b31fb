"""
Latest-value stores for live driver positions.

Both stores keep exactly one sample per booking: a write replaces the
previous sample, nothing is appended.

* ``MemoryLocationStore`` -- process-local dict; samples vanish on restart.
* ``RedisLocationStore``  -- JSON string per booking with a TTL, shared by
  every API process.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import redis.asyncio as aioredis

from tripcore.domain.entities import DriverLocationSample


class LocationStore(ABC):
    @abstractmethod
    async def put(self, sample: DriverLocationSample) -> None: ...

    @abstractmethod
    async def get(self, booking_id: int) -> Optional[DriverLocationSample]: ...

    @abstractmethod
    async def delete(self, booking_id: int) -> None: ...

    @abstractmethod
    async def booking_ids(self) -> list[int]: ...


class MemoryLocationStore(LocationStore):
    def __init__(self) -> None:
        self._samples: dict[int, DriverLocationSample] = {}

    async def put(self, sample: DriverLocationSample) -> None:
        self._samples[sample.booking_id] = sample

    async def get(self, booking_id: int) -> Optional[DriverLocationSample]:
        return self._samples.get(booking_id)

    async def delete(self, booking_id: int) -> None:
        self._samples.pop(booking_id, None)

    async def booking_ids(self) -> list[int]:
        return list(self._samples)


class RedisLocationStore(LocationStore):
    PREFIX = "driver_location:"

    def __init__(self, client: aioredis.Redis, ttl_seconds: int):
        self.redis = client
        self.ttl = ttl_seconds

    def _key(self, booking_id: int) -> str:
        return f"{self.PREFIX}{booking_id}"

    async def put(self, sample: DriverLocationSample) -> None:
        payload = json.dumps(
            {
                "lat": sample.lat,
                "lng": sample.lng,
                "heading": sample.heading,
                "updated_at": sample.updated_at.isoformat(),
            }
        )
        await self.redis.set(self._key(sample.booking_id), payload, ex=self.ttl)

    async def get(self, booking_id: int) -> Optional[DriverLocationSample]:
        raw = await self.redis.get(self._key(booking_id))
        if raw is None:
            return None
        data = json.loads(raw)
        return DriverLocationSample(
            booking_id=booking_id,
            lat=data["lat"],
            lng=data["lng"],
            heading=data.get("heading", 0.0),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    async def delete(self, booking_id: int) -> None:
        await self.redis.delete(self._key(booking_id))

    async def booking_ids(self) -> list[int]:
        ids = []
        async for key in self.redis.scan_iter(match=f"{self.PREFIX}*"):
            ids.append(int(key[len(self.PREFIX):]))
        return ids
