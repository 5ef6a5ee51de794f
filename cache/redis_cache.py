"""
Redis Cache Manager
===================
Best-effort cache layered over MongoDB. Never the source of truth.

Every public method degrades instead of raising: with Redis down,
reads miss (None / []), writes return False and rate limiting lets
requests through. Callers always keep a path to the primary store.

Key layout:
    session:user:<id>            24h, refreshed on read
    user:profile:<id>            30m
    user:preferences:<id>        1h
    user:trips:<id>              15m
    trip:<id>                    30m
    trip:collaborators:<id>      10m
    presence:<trip>:<user>       5m
    activity:<trip>              24h, newest 100 entries
    rate_limit:<identifier>      window
"""

import asyncio
import inspect
import json
from datetime import timedelta
from typing import Optional, List, Dict, Any, Callable, Iterable, Awaitable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from config.settings import RedisConfig
from database.errors import CacheUnavailable
from utils.helpers import sanitize_connection_string, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

# Errors that mean "cache unavailable" rather than a programming error
CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class CacheManager:
    """
    Redis cache with structured helpers, invalidation and pub/sub.

    Features:
        ✅ Bounded connect retries, then runs without cache
        ✅ Periodic health checks
        ✅ Session / profile / trip / presence / activity helpers
        ✅ Allow-list invalidation with collaborator fan-out
        ✅ Trip update pub/sub
        ✅ Fixed-window rate limiting that fails open
    """

    DEFAULT_TTL = 3600
    TTL_SESSION = 86400
    TTL_PROFILE = 1800
    TTL_PREFERENCES = 3600
    TTL_USER_TRIPS = 900
    TTL_TRIP = 1800
    TTL_COLLABORATORS = 600
    TTL_PRESENCE = 300
    TTL_ACTIVITY = 86400
    ACTIVITY_LIMIT = 100

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        client_factory: Optional[Callable[..., Any]] = None
    ):
        """
        Initialize cache manager.

        Args:
            config: Redis settings
            client_factory: Callable(url, **options) returning an async
                Redis client; defaults to Redis.from_url
        """
        self.config = config or RedisConfig()
        self._client_factory = client_factory or Redis.from_url

        self._client: Optional[Redis] = None
        self._connected = False
        self.retry_count = 0
        self.last_health: Optional[Dict[str, Any]] = None

        self._health_task: Optional[asyncio.Task] = None
        self._subscriptions: Dict[str, Dict[str, Any]] = {}

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._connected

    # ==================== CONNECTION ====================

    async def connect(self) -> bool:
        """
        Connect to Redis.

        Returns:
            bool: False when disabled or unreachable; the application
            then runs without a cache
        """
        if not self.config.enabled:
            logger.info("ℹ️ Redis cache disabled by configuration")
            return False

        if self.is_connected:
            return True

        url = self.config.connection_url
        self.retry_count = 0

        while self.retry_count < self.config.max_retries:
            attempt = self.retry_count + 1
            logger.info(
                f"📡 Connecting to Redis (attempt {attempt}/{self.config.max_retries}): "
                f"{sanitize_connection_string(url)}"
            )

            client = self._client_factory(
                url,
                decode_responses=True,
                socket_connect_timeout=self.config.connect_timeout_ms / 1000,
                socket_timeout=self.config.command_timeout_ms / 1000
            )

            try:
                await client.ping()
            except CACHE_ERRORS as e:
                self.retry_count += 1
                logger.warning(f"⚠️ Redis connection attempt {attempt} failed: {e}")
                await self._close_quietly(client)

                if self.retry_count < self.config.max_retries:
                    await asyncio.sleep(self.config.retry_delay_ms / 1000)
                continue

            self._client = client
            self._connected = True
            self.retry_count = 0
            self._start_health_checks()
            logger.info("✅ Connected to Redis")
            return True

        logger.warning("⚠️ Redis unavailable, continuing without cache")
        return False

    @staticmethod
    async def _close_quietly(client: Any) -> None:
        try:
            await client.aclose()
        except CACHE_ERRORS as e:
            logger.debug(f"Redis close failed: {e}")

    def _require_client(self) -> Redis:
        if self._client is None or not self._connected:
            raise CacheUnavailable("Redis not connected")
        return self._client

    async def _execute(
        self,
        operation: str,
        fallback: Any,
        command: Callable[[Redis], Awaitable[Any]]
    ) -> Any:
        """Run a command, turning every cache failure into `fallback`."""
        try:
            client = self._require_client()
            return await command(client)
        except CacheUnavailable:
            return fallback
        except CACHE_ERRORS as e:
            logger.warning(f"⚠️ Cache {operation} failed: {e}")
            return fallback

    @staticmethod
    def _dumps(value: Any) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def _loads(raw: Any) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    # ==================== HEALTH ====================

    def _start_health_checks(self) -> None:
        interval = self.config.health_check_interval_ms
        if interval <= 0:
            return
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_check_loop(interval / 1000))

    async def _health_check_loop(self, interval: float) -> None:
        while self._client is not None:
            await asyncio.sleep(interval)
            await self.perform_health_check()

    async def perform_health_check(self) -> Dict[str, Any]:
        """
        Ping Redis and collect basic server info. Never raises.

        A failed check marks the cache unavailable until a later
        check succeeds; the client reconnects on its own.
        """
        if self._client is None:
            report = {"connected": False, "error": "Redis not connected", "timestamp": utc_now().isoformat()}
            self.last_health = report
            return report

        try:
            loop = asyncio.get_running_loop()
            start = loop.time()
            await self._client.ping()
            latency = (loop.time() - start) * 1000

            memory = await self._client.info("memory")
            server = await self._client.info("server")

            if not self._connected:
                logger.info("✅ Redis connection restored")
            self._connected = True

            report = {
                "connected": True,
                "latency_ms": round(latency, 2),
                "memory_used": memory.get("used_memory_human"),
                "version": server.get("redis_version"),
                "timestamp": utc_now().isoformat()
            }

        except CACHE_ERRORS as e:
            if self._connected:
                logger.error(f"❌ Redis health check failed: {e}")
            self._connected = False
            report = {"connected": False, "error": str(e), "timestamp": utc_now().isoformat()}

        self.last_health = report
        return report

    async def health_check(self) -> Dict[str, Any]:
        report = await self.perform_health_check()
        return {
            **report,
            "url": sanitize_connection_string(self.config.connection_url),
            "enabled": self.config.enabled,
            "subscriptions": len(self._subscriptions)
        }

    # ==================== BASIC OPERATIONS ====================

    async def get(self, key: str) -> Any:
        """Get a JSON value, or None on miss or failure."""
        raw = await self._execute("get", None, lambda c: c.get(key))
        return self._loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = DEFAULT_TTL) -> bool:
        """Store a JSON-serializable value with a TTL in seconds."""
        payload = self._dumps(value)
        if ttl:
            result = await self._execute("set", False, lambda c: c.set(key, payload, ex=ttl))
        else:
            result = await self._execute("set", False, lambda c: c.set(key, payload))
        return bool(result)

    async def delete(self, *keys: str) -> bool:
        """Delete keys. True when the command ran, whether or not keys existed."""
        if not keys:
            return self.is_connected
        result = await self._execute("delete", None, lambda c: c.delete(*keys))
        return result is not None

    async def exists(self, key: str) -> bool:
        return bool(await self._execute("exists", 0, lambda c: c.exists(key)))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._execute("expire", False, lambda c: c.expire(key, ttl)))

    # ==================== SESSIONS ====================

    async def cache_user_session(self, user_id: str, session: Dict[str, Any], ttl: int = TTL_SESSION) -> bool:
        return await self.set(f"session:user:{user_id}", session, ttl)

    async def get_user_session(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get a session and push its expiry out another full period."""
        key = f"session:user:{user_id}"
        session = await self.get(key)
        if session is not None:
            await self.expire(key, self.TTL_SESSION)
        return session

    async def update_user_session(self, user_id: str, updates: Dict[str, Any]) -> bool:
        session = await self.get_user_session(user_id)
        if session is None:
            return False
        session.update(updates)
        session["lastActivity"] = utc_now().isoformat()
        return await self.cache_user_session(user_id, session)

    async def invalidate_user_session(self, user_id: str) -> bool:
        return await self.delete(f"session:user:{user_id}")

    # ==================== USERS ====================

    async def cache_user_profile(self, user_id: str, profile: Dict[str, Any]) -> bool:
        return await self.set(f"user:profile:{user_id}", profile, self.TTL_PROFILE)

    async def get_cached_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.get(f"user:profile:{user_id}")

    async def cache_user_preferences(self, user_id: str, preferences: Dict[str, Any]) -> bool:
        return await self.set(f"user:preferences:{user_id}", preferences, self.TTL_PREFERENCES)

    async def get_cached_user_preferences(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.get(f"user:preferences:{user_id}")

    async def cache_user_trips(self, user_id: str, trips: List[Any]) -> bool:
        return await self.set(f"user:trips:{user_id}", trips, self.TTL_USER_TRIPS)

    async def get_cached_user_trips(self, user_id: str) -> Optional[List[Any]]:
        return await self.get(f"user:trips:{user_id}")

    # ==================== TRIPS ====================

    async def cache_trip(self, trip_id: str, trip: Dict[str, Any]) -> bool:
        return await self.set(f"trip:{trip_id}", trip, self.TTL_TRIP)

    async def get_cached_trip(self, trip_id: str) -> Optional[Dict[str, Any]]:
        return await self.get(f"trip:{trip_id}")

    async def cache_trip_collaborators(self, trip_id: str, collaborators: List[Any]) -> bool:
        return await self.set(f"trip:collaborators:{trip_id}", collaborators, self.TTL_COLLABORATORS)

    async def get_cached_trip_collaborators(self, trip_id: str) -> Optional[List[Any]]:
        return await self.get(f"trip:collaborators:{trip_id}")

    # ==================== PRESENCE ====================

    async def set_user_presence(
        self,
        trip_id: str,
        user_id: str,
        presence: Optional[Dict[str, Any]] = None,
        ttl: int = TTL_PRESENCE
    ) -> bool:
        value = {**(presence or {}), "userId": user_id, "lastSeen": utc_now().isoformat()}
        return await self.set(f"presence:{trip_id}:{user_id}", value, ttl)

    async def get_trip_presence(self, trip_id: str) -> List[Dict[str, Any]]:
        """Everyone currently present on a trip."""
        async def collect(client: Redis) -> List[Any]:
            keys = await self._scan_keys(client, f"presence:{trip_id}:*")
            if not keys:
                return []
            return await client.mget(keys)

        values = await self._execute("presence lookup", [], collect)
        return [self._loads(v) for v in values if v is not None]

    async def remove_user_presence(self, trip_id: str, user_id: str) -> bool:
        return await self.delete(f"presence:{trip_id}:{user_id}")

    @staticmethod
    async def _scan_keys(client: Redis, pattern: str) -> List[str]:
        # SCAN instead of KEYS; only used on bounded namespaces
        return [key async for key in client.scan_iter(match=pattern, count=100)]

    # ==================== ACTIVITY ====================

    async def log_activity(self, trip_id: str, activity: Dict[str, Any]) -> bool:
        """Prepend an activity entry, keeping the newest ACTIVITY_LIMIT."""
        key = f"activity:{trip_id}"
        entry = self._dumps({**activity, "timestamp": utc_now().isoformat()})

        async def push(client: Redis) -> bool:
            async with client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, entry)
                pipe.ltrim(key, 0, self.ACTIVITY_LIMIT - 1)
                pipe.expire(key, self.TTL_ACTIVITY)
                await pipe.execute()
            return True

        return await self._execute("activity log", False, push)

    async def get_trip_activity(self, trip_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        limit = max(1, min(limit, self.ACTIVITY_LIMIT))
        entries = await self._execute(
            "activity read", [], lambda c: c.lrange(f"activity:{trip_id}", 0, limit - 1)
        )
        return [self._loads(entry) for entry in entries]

    # ==================== INVALIDATION ====================

    async def invalidate_user_cache(self, user_id: str) -> bool:
        """Drop every cached entry of a user (fixed key list, no scan)."""
        return await self.delete(
            f"user:profile:{user_id}",
            f"user:preferences:{user_id}",
            f"user:trips:{user_id}",
            f"session:user:{user_id}"
        )

    async def invalidate_trip_cache(self, trip_id: str, collaborator_ids: Iterable[str] = ()) -> bool:
        """
        Drop a trip's entries, its presence namespace, and the cached
        trip lists of every collaborator.
        """
        keys = [
            f"trip:{trip_id}",
            f"trip:collaborators:{trip_id}",
            f"activity:{trip_id}",
        ]
        keys.extend(f"user:trips:{user_id}" for user_id in collaborator_ids)

        async def invalidate(client: Redis) -> bool:
            presence_keys = await self._scan_keys(client, f"presence:{trip_id}:*")
            await client.delete(*keys, *presence_keys)
            return True

        return await self._execute("trip invalidation", False, invalidate)

    async def invalidate_all_cache(self) -> bool:
        """Flush the whole cache database."""
        result = await self._execute("flush", False, lambda c: c.flushdb())
        if result:
            logger.info("🧹 Cache flushed")
        return bool(result)

    # ==================== PUB/SUB ====================

    @staticmethod
    def _trip_channel(trip_id: str) -> str:
        return f"trip:{trip_id}:updates"

    async def publish_trip_update(self, trip_id: str, update: Dict[str, Any]) -> bool:
        """Best-effort broadcast; offline subscribers miss it."""
        message = self._dumps({**update, "tripId": trip_id, "timestamp": utc_now().isoformat()})
        result = await self._execute(
            "publish", None, lambda c: c.publish(self._trip_channel(trip_id), message)
        )
        return result is not None

    async def subscribe_trip_updates(
        self,
        trip_id: str,
        callback: Callable[[Any], Any]
    ) -> bool:
        """
        Call `callback` with every update published for the trip.

        The callback may be sync or async. Its exceptions are logged
        and do not stop the subscription.
        """
        channel = self._trip_channel(trip_id)

        existing = self._subscriptions.get(channel)
        if existing is not None:
            existing["callbacks"].append(callback)
            return True

        async def open_subscription(client: Redis):
            pubsub = client.pubsub()
            await pubsub.subscribe(channel)
            return pubsub

        pubsub = await self._execute("subscribe", None, open_subscription)
        if pubsub is None:
            return False

        entry = {"trip_id": trip_id, "pubsub": pubsub, "callbacks": [callback]}
        entry["task"] = asyncio.create_task(self._listen(channel, entry))
        self._subscriptions[channel] = entry

        logger.debug(f"📻 Subscribed to {channel}")
        return True

    async def _listen(self, channel: str, entry: Dict[str, Any]) -> None:
        try:
            async for message in entry["pubsub"].listen():
                if message.get("type") != "message":
                    continue

                data = self._loads(message.get("data"))
                for callback in list(entry["callbacks"]):
                    try:
                        result = callback(data)
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        logger.warning(f"⚠️ Subscriber callback for {channel} failed: {e}")

        except CACHE_ERRORS as e:
            logger.warning(f"⚠️ Subscription to {channel} lost: {e}")

    async def unsubscribe_trip_updates(self, trip_id: str) -> bool:
        channel = self._trip_channel(trip_id)
        entry = self._subscriptions.pop(channel, None)
        if entry is None:
            return False

        task = entry.get("task")
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        pubsub = entry["pubsub"]
        try:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        except CACHE_ERRORS as e:
            logger.debug(f"Unsubscribe from {channel} failed: {e}")
            return False

        logger.debug(f"📴 Unsubscribed from {channel}")
        return True

    # ==================== RATE LIMITING ====================

    async def check_rate_limit(
        self,
        identifier: str,
        limit: int = 100,
        window_seconds: int = 3600
    ) -> Dict[str, Any]:
        """
        Fixed-window rate limit.

        Returns:
            {allowed, remaining, reset_time}; allowed is True whenever
            the cache is unavailable
        """
        key = f"rate_limit:{identifier}"

        async def check(client: Redis) -> Dict[str, Any]:
            # INCR is atomic, so concurrent callers each see their own count
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, window_seconds)
                ttl = window_seconds
            else:
                ttl = await client.ttl(key)
                if ttl < 0:
                    # Counter lost its TTL; start a fresh window instead of blocking forever
                    await client.expire(key, window_seconds)
                    ttl = window_seconds

            reset_time = utc_now() + timedelta(seconds=ttl)
            if count > limit:
                return {"allowed": False, "remaining": 0, "reset_time": reset_time}
            return {"allowed": True, "remaining": limit - count, "reset_time": reset_time}

        fail_open = {"allowed": True, "remaining": limit, "reset_time": None}
        return await self._execute("rate limit", fail_open, check)

    # ==================== SHUTDOWN ====================

    async def graceful_shutdown(self) -> None:
        """Stop health checks, drop subscriptions and close the client."""
        task, self._health_task = self._health_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for entry in list(self._subscriptions.values()):
            await self.unsubscribe_trip_updates(entry["trip_id"])

        client, self._client = self._client, None
        self._connected = False

        if client is not None:
            await self._close_quietly(client)
            logger.info("🔌 Disconnected from Redis")
