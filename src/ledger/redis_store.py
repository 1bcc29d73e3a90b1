# src/ledger/redis_store.py - v1
"""Redis-based ledger store (LEDGER_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for multi-process and multi-host workers sharing one ledger.

Each record is a hash with ``status``, ``created_at``, ``expires_at`` and
the full JSON ``data``. Conditional writes run as Lua scripts so the
read-compare-write happens atomically on the server. A sorted set indexed by
``expires_at`` lets ``delete_expired`` avoid a keyspace scan.
"""

from __future__ import annotations

import logging

from prospector.core.errors import StoreUnavailableError
from prospector.ledger.base_ledger_store import BaseLedgerStore
from prospector.ledger.models import IdempotencyRecord, LedgerStatus

logger = logging.getLogger(__name__)

_KEY_PREFIX = "prospector:ledger:"
_EXPIRY_INDEX = "prospector:ledger:__expiry__"

# KEYS[1]=record, KEYS[2]=index; ARGV: status, created_at, expires_at, data, key
_INSERT_IF_ABSENT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'status', ARGV[1], 'created_at', ARGV[2],
           'expires_at', ARGV[3], 'data', ARGV[4])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[5])
return 1
"""

# ARGV: expected status, expected created_at, then new status, created_at, expires_at, data, key
_REPLACE_IF = """
if redis.call('HGET', KEYS[1], 'status') ~= ARGV[1]
   or redis.call('HGET', KEYS[1], 'created_at') ~= ARGV[2] then
    return 0
end
redis.call('HSET', KEYS[1], 'status', ARGV[3], 'created_at', ARGV[4],
           'expires_at', ARGV[5], 'data', ARGV[6])
redis.call('ZADD', KEYS[2], ARGV[5], ARGV[7])
return 1
"""

# ARGV: required status ('' = any), key
_DELETE = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
if ARGV[1] ~= '' and redis.call('HGET', KEYS[1], 'status') ~= ARGV[1] then
    return 0
end
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[2])
return 1
"""

# ARGV: now, key. Re-checks expiry so a concurrently refreshed record survives.
_DELETE_IF_EXPIRED = """
local expires_at = redis.call('HGET', KEYS[1], 'expires_at')
if expires_at and tonumber(expires_at) > tonumber(ARGV[1]) then
    return 0
end
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[2])
if expires_at then
    return 1
end
return 0
"""


class RedisLedgerStore(BaseLedgerStore):
    """Redis-backed ledger store for distributed deployments."""

    def __init__(self, redis_url: str) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._redis_error: type[Exception] = redis.RedisError
        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._register_scripts()

    def _register_scripts(self) -> None:
        self._insert_script = self._client.register_script(_INSERT_IF_ABSENT)
        self._replace_script = self._client.register_script(_REPLACE_IF)
        self._delete_script = self._client.register_script(_DELETE)
        self._expire_script = self._client.register_script(_DELETE_IF_EXPIRED)

    async def get(self, key: str) -> IdempotencyRecord | None:
        try:
            data = self._client.hget(f"{_KEY_PREFIX}{key}", "data")
        except self._redis_error as e:
            raise StoreUnavailableError("ledger", "get", e) from e
        if data is None:
            return None
        return IdempotencyRecord.model_validate_json(data)

    async def insert_if_absent(self, record: IdempotencyRecord) -> bool:
        result = self._run(
            "insert_if_absent",
            self._insert_script,
            [f"{_KEY_PREFIX}{record.key}", _EXPIRY_INDEX],
            [*_fields(record), record.key],
        )
        return int(result) == 1

    async def replace_if(
        self, expected: IdempotencyRecord, new: IdempotencyRecord
    ) -> bool:
        result = self._run(
            "replace_if",
            self._replace_script,
            [f"{_KEY_PREFIX}{expected.key}", _EXPIRY_INDEX],
            [expected.status, repr(expected.created_at), *_fields(new), new.key],
        )
        return int(result) == 1

    async def put(self, record: IdempotencyRecord) -> None:
        redis_key = f"{_KEY_PREFIX}{record.key}"
        status, created_at, expires_at, data = _fields(record)
        try:
            pipe = self._client.pipeline()
            pipe.hset(
                redis_key,
                mapping={
                    "status": status,
                    "created_at": created_at,
                    "expires_at": expires_at,
                    "data": data,
                },
            )
            pipe.zadd(_EXPIRY_INDEX, {record.key: record.expires_at})
            pipe.execute()
        except self._redis_error as e:
            raise StoreUnavailableError("ledger", "put", e) from e

    async def delete(self, key: str, only_status: LedgerStatus | None = None) -> bool:
        result = self._run(
            "delete",
            self._delete_script,
            [f"{_KEY_PREFIX}{key}", _EXPIRY_INDEX],
            [only_status or "", key],
        )
        return int(result) == 1

    async def delete_expired(self, now: float) -> int:
        try:
            candidates = self._client.zrangebyscore(_EXPIRY_INDEX, "-inf", now)
        except self._redis_error as e:
            raise StoreUnavailableError("ledger", "delete_expired", e) from e
        removed = 0
        for key in candidates:
            result = self._run(
                "delete_expired",
                self._expire_script,
                [f"{_KEY_PREFIX}{key}", _EXPIRY_INDEX],
                [repr(now), key],
            )
            removed += int(result)
        return removed

    def _run(self, operation: str, script, keys: list[str], args: list[str]):
        try:
            return script(keys=keys, args=args)
        except self._redis_error as e:
            raise StoreUnavailableError("ledger", operation, e) from e

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()


def _fields(record: IdempotencyRecord) -> tuple[str, str, str, str]:
    return (
        record.status,
        repr(record.created_at),
        repr(record.expires_at),
        record.model_dump_json(),
    )
