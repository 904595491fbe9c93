"""Redis-backed event store adapter.

Key layout (``prefix`` defaults to ``intentflow``)::

    {prefix}:events                      stream, one entry per appended event
    {prefix}:seq                         store-wide sequence counter
    {prefix}:event:{id}                  event blob (orjson)
    {prefix}:aggregate:{id}:version      current aggregate version
    {prefix}:aggregate:{id}:events       event ids of the aggregate, in order
    {prefix}:correlation:{id}            event ids of the workflow, in order
    {prefix}:idempotency:{key}           id of the event the key produced
"""
import structlog
import orjson
from redis import Redis
from redis.exceptions import RedisError, WatchError
from .base import AppendResult, EventFilters, EventStoreAdapter, correlation_order
from ..errors import MalformedEventError, StoreUnavailableError, VersionConflictError
from ..event_models import Event, StoredEvent, parse_stored_event, serialize_event

log = structlog.get_logger()


class RedisEventStore(EventStoreAdapter):
    """Redis implementation of the event store adapter.

    Events are appended to a Redis stream and indexed by id, aggregate and
    correlation. Aggregate versions are guarded with WATCH/MULTI so concurrent
    writers to the same aggregate cannot both succeed.
    """

    def __init__(self, redis_url: str, key_prefix: str = "intentflow"):
        """
        Initialize Redis event store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Namespace for every key this store writes
        """
        self.redis_url = redis_url
        self.prefix = key_prefix
        self._client: Redis | None = None
        self._stream_key = f"{key_prefix}:events"

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,  # We'll handle encoding ourselves
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._client

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    def _load(self, blob: bytes | None) -> StoredEvent | None:
        if blob is None:
            return None
        try:
            return parse_stored_event(blob)
        except MalformedEventError as e:
            log.error("redis.corrupt_event", error=e.message, context=e.context)
            raise

    async def append(
        self,
        event: Event,
        expected_version: int | None = None,
        idempotency_key: str | None = None,
    ) -> AppendResult:
        """
        Append event to the Redis log.

        Raises:
            VersionConflictError: expected_version does not match the aggregate
            StoreUnavailableError: Redis could not be reached
        """
        version_key = self._key("aggregate", event.aggregate_id, "version") if event.aggregate_id else None
        idem_key = self._key("idempotency", idempotency_key) if idempotency_key else None
        watched = [k for k in (version_key, idem_key) if k]

        try:
            client = self._get_client()
            sequence = client.incr(self._key("seq"))

            with client.pipeline() as pipe:
                while True:
                    try:
                        if watched:
                            pipe.watch(*watched)

                        if idem_key:
                            existing_id = pipe.get(idem_key)
                            if existing_id:
                                pipe.unwatch()
                                existing = self._load(client.get(self._key("event", existing_id.decode())))
                                if existing is None:
                                    raise StoreUnavailableError(
                                        "idempotency key refers to a missing event",
                                        {"idempotency_key": idempotency_key},
                                    )
                                log.info(
                                    "event.duplicate",
                                    id=existing.id,
                                    type=existing.type,
                                    idempotency_key=idempotency_key,
                                    adapter="redis",
                                )
                                return AppendResult(event=existing, duplicate=True)

                        version = None
                        if version_key:
                            current = int(pipe.get(version_key) or 0)
                            if expected_version is not None and expected_version != current:
                                pipe.unwatch()
                                raise VersionConflictError(event.aggregate_id, expected_version, current)
                            version = current + 1

                        stored = StoredEvent.from_event(event, sequence=sequence, aggregate_version=version)
                        blob = orjson.dumps(serialize_event(stored))

                        pipe.multi()
                        pipe.set(self._key("event", stored.id), blob)
                        pipe.xadd(self._stream_key, {"data": blob}, id="*")
                        if version_key:
                            pipe.set(version_key, version)
                            pipe.rpush(self._key("aggregate", event.aggregate_id, "events"), stored.id)
                        if stored.correlation_id:
                            pipe.rpush(self._key("correlation", stored.correlation_id), stored.id)
                        if idem_key:
                            pipe.set(idem_key, stored.id)
                        pipe.execute()
                        break
                    except WatchError:
                        log.debug("redis.append_retry", aggregate_id=event.aggregate_id)
                        continue

        except RedisError as e:
            log.error("redis.append_failed", error=str(e), event_id=event.id)
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

        log.info(
            "event.stored",
            id=stored.id,
            type=stored.type,
            sequence=stored.sequence,
            adapter="redis",
        )
        return AppendResult(event=stored)

    def _load_many(self, client: Redis, ids: list[bytes]) -> list[StoredEvent]:
        if not ids:
            return []
        blobs = client.mget([self._key("event", i.decode()) for i in ids])
        return [e for e in (self._load(b) for b in blobs) if e is not None]

    async def find_by_id(self, event_id: str) -> StoredEvent | None:
        try:
            return self._load(self._get_client().get(self._key("event", event_id)))
        except RedisError as e:
            log.error("redis.read_failed", error=str(e), event_id=event_id)
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

    async def get_correlated_events(self, correlation_id: str) -> list[StoredEvent]:
        try:
            client = self._get_client()
            ids = client.lrange(self._key("correlation", correlation_id), 0, -1)
            return sorted(self._load_many(client, ids), key=correlation_order)
        except RedisError as e:
            log.error("redis.read_failed", error=str(e), correlation_id=correlation_id)
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

    async def get_aggregate_stream(self, aggregate_id: str, from_version: int = 0) -> list[StoredEvent]:
        try:
            client = self._get_client()
            # Versions start at 1, so list index i holds version i + 1
            ids = client.lrange(self._key("aggregate", aggregate_id, "events"), from_version, -1)
            return self._load_many(client, ids)
        except RedisError as e:
            log.error("redis.read_failed", error=str(e), aggregate_id=aggregate_id)
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

    async def get_aggregate_version(self, aggregate_id: str) -> int:
        try:
            return int(self._get_client().get(self._key("aggregate", aggregate_id, "version")) or 0)
        except RedisError as e:
            log.error("redis.read_failed", error=str(e), aggregate_id=aggregate_id)
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

    def _scan(self, filters: EventFilters):
        """Walk the stream newest first, yielding matching events."""
        client = self._get_client()
        # XREVRANGE returns entries newest first
        for _entry_id, entry_data in client.xrevrange(self._stream_key):
            if b"data" not in entry_data:
                continue
            event = self._load(entry_data[b"data"])
            if event is not None and filters.matches(event):
                yield event

    async def search_events(self, filters: EventFilters) -> list[StoredEvent]:
        """
        Search events from the Redis stream.

        Returns:
            One page of matching events in reverse chronological order
        """
        try:
            matched = list(self._scan(filters))
            return matched[filters.offset:filters.offset + filters.limit]
        except RedisError as e:
            log.error("redis.list_failed", error=str(e))
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

    async def count_events(self, filters: EventFilters) -> int:
        try:
            return sum(1 for _ in self._scan(filters))
        except RedisError as e:
            log.error("redis.list_failed", error=str(e))
            raise StoreUnavailableError("event store unavailable", {"error": str(e)}) from e

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            client = self._get_client()
            return bool(client.ping())
        except RedisError as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    def close(self):
        """Close Redis connection."""
        if self._client:
            self._client.close()
            self._client = None
