"""
Connection Manager
==================
Owns the MongoDB client for the process: connection state machine,
retry with configurable backoff, periodic health checks and
reconnection after the driver reports the server gone.

Other managers borrow the database handle through `get_database()`
for each operation and never keep it across reconnects.
"""

import asyncio
from typing import Optional, Dict, Any, Callable

import motor.motor_asyncio
from pymongo import monitoring
from pymongo.errors import ConfigurationError, PyMongoError

from config.settings import MongoDBConfig
from utils.helpers import backoff_delay, sanitize_connection_string, utc_now
from utils.logger import get_logger

from .errors import DatabaseConnectionError
from .models import ConnectionState

logger = get_logger(__name__)


class _HeartbeatListener(monitoring.ServerHeartbeatListener):
    """Forwards driver heartbeat failures to the manager's event loop."""

    def __init__(self, manager: 'ConnectionManager'):
        self._manager = manager

    def started(self, event) -> None:
        pass

    def succeeded(self, event) -> None:
        pass

    def failed(self, event) -> None:
        # Runs on a driver monitor thread
        loop = self._manager._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(
                self._manager._handle_disconnect,
                f"heartbeat to {event.connection_id} failed: {event.reply}"
            )


class ConnectionManager:
    """
    MongoDB connection manager with retry, health checks and reconnection.

    Features:
        - Explicit instances (no process-wide singleton)
        - Idempotent connect, safe against concurrent callers
        - Fixed, linear or exponential retry delay
        - Background health checks
        - Reconnection driven by driver heartbeats and failed health checks
        - Idempotent graceful shutdown
    """

    RETRY_WRITES = True

    def __init__(
        self,
        config: Optional[MongoDBConfig] = None,
        client_factory: Optional[Callable[..., Any]] = None
    ):
        """
        Initialize connection manager.

        Args:
            config: MongoDB settings
            client_factory: Callable building the client; defaults to
                AsyncIOMotorClient
        """
        self.config = config or MongoDBConfig()
        self._client_factory = client_factory or motor.motor_asyncio.AsyncIOMotorClient

        self.client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
        self.database: Optional[motor.motor_asyncio.AsyncIOMotorDatabase] = None
        self.state = ConnectionState.DISCONNECTED
        self.retry_count = 0
        self.last_health: Optional[Dict[str, Any]] = None

        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._health_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._shutting_down = False
        self._listener = _HeartbeatListener(self)

    # ==================== CONNECT ====================

    async def connect(self):
        """
        Establish connection to MongoDB.

        Retries up to `max_retries` times, waiting according to the
        configured retry strategy between attempts.

        Returns:
            The connected database handle

        Raises:
            DatabaseConnectionError: when every attempt failed
        """
        async with self._lock:
            if self.state == ConnectionState.CONNECTED and self.database is not None:
                logger.debug("Already connected to MongoDB")
                return self.database

            self._loop = asyncio.get_running_loop()
            self._shutting_down = False
            self.retry_count = 0
            self.state = ConnectionState.CONNECTING

            max_retries = self.config.max_retries
            last_error: Optional[Exception] = None

            while self.retry_count < max_retries:
                attempt = self.retry_count + 1
                logger.info(
                    f"📡 Connecting to MongoDB (attempt {attempt}/{max_retries}): "
                    f"{sanitize_connection_string(self.config.uri)}"
                )

                try:
                    await self._open()
                except ConfigurationError as e:
                    self.state = ConnectionState.ERROR
                    logger.error(f"❌ Invalid MongoDB configuration: {e}")
                    raise DatabaseConnectionError(f"Invalid MongoDB configuration: {e}") from e
                except (PyMongoError, OSError) as e:
                    last_error = e
                    self.retry_count += 1
                    logger.warning(f"⏱️ Connection attempt {attempt} failed: {e}")

                    if self.retry_count < max_retries:
                        delay = self._retry_delay(self.retry_count)
                        logger.info(f"🔄 Retrying in {delay:.1f}s...")
                        await asyncio.sleep(delay)

                    if self._shutting_down:
                        break
                    continue

                if self._shutting_down:
                    self._close_client()
                    self.state = ConnectionState.DISCONNECTED
                    raise DatabaseConnectionError("Shutdown requested while connecting")

                self.retry_count = 0
                self.state = ConnectionState.CONNECTED
                self._start_health_checks()

                logger.info(f"✅ Connected to MongoDB: {self.config.database}")
                return self.database

            self.state = ConnectionState.ERROR
            logger.error(f"❌ Failed to connect after {self.retry_count} attempts")
            raise DatabaseConnectionError(
                f"Failed to connect to MongoDB after {self.retry_count} attempts: {last_error}"
            ) from last_error

    async def _open(self) -> None:
        """Create a client, ping it and select the database."""
        self._close_client()

        self.client = self._client_factory(
            self.config.uri,
            maxPoolSize=self.config.max_pool_size,
            minPoolSize=self.config.min_pool_size,
            serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
            connectTimeoutMS=self.config.connect_timeout_ms,
            socketTimeoutMS=self.config.socket_timeout_ms,
            retryWrites=self.RETRY_WRITES,
            event_listeners=[self._listener]
        )

        try:
            await self.client.admin.command('ping')
        except BaseException:
            self._close_client()
            raise

        self.database = self.client[self.config.database]

    def _close_client(self) -> None:
        if self.client is not None:
            self.client.close()
        self.client = None
        self.database = None

    def _retry_delay(self, attempt: int) -> float:
        """Delay in seconds before the next attempt."""
        delay_ms = backoff_delay(
            self.config.retry_delay_ms,
            attempt,
            self.config.retry_strategy,
            cap=self.config.max_retry_delay_ms
        )
        return delay_ms / 1000

    # ==================== RECONNECTION ====================

    def _handle_disconnect(self, reason: Optional[str] = None) -> None:
        """Move a connected manager into reconnection."""
        if self._shutting_down or self.state != ConnectionState.CONNECTED:
            return

        logger.warning(f"⚠️ MongoDB disconnected: {reason or 'unknown reason'}")
        self.state = ConnectionState.DISCONNECTED

        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        max_retries = self.config.max_retries

        while not self._shutting_down and self.retry_count < max_retries:
            self.retry_count += 1
            self.state = ConnectionState.RECONNECTING

            delay = self._retry_delay(self.retry_count)
            logger.info(
                f"🔄 Reconnecting to MongoDB in {delay:.1f}s "
                f"(attempt {self.retry_count}/{max_retries})"
            )
            await asyncio.sleep(delay)

            if self._shutting_down:
                return

            try:
                async with self._lock:
                    await self._open()
            except (PyMongoError, OSError) as e:
                logger.warning(f"⏱️ Reconnection attempt {self.retry_count} failed: {e}")
                continue

            self.retry_count = 0
            self.state = ConnectionState.CONNECTED
            logger.info(f"✅ Reconnected to MongoDB: {self.config.database}")
            return

        if not self._shutting_down:
            self.state = ConnectionState.DISCONNECTED
            logger.error(f"❌ Giving up on MongoDB after {max_retries} reconnection attempts")

    # ==================== HEALTH ====================

    def _start_health_checks(self) -> None:
        interval = self.config.health_check_interval_ms
        if interval <= 0:
            return
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_check_loop(interval / 1000))

    async def _health_check_loop(self, interval: float) -> None:
        # Re-armed only after the previous check finished, so checks never overlap
        while not self._shutting_down:
            await asyncio.sleep(interval)

            report = await self.perform_health_check()
            if not report["connected"]:
                self._handle_disconnect(report.get("error"))

    async def perform_health_check(self) -> Dict[str, Any]:
        """
        Perform health check on database connection.

        Never raises; failures are reported in the returned dict.

        Returns:
            Dict containing health status and metrics
        """
        if self.client is None or self.database is None:
            report = {
                "connected": False,
                "status": self.state.value,
                "error": "Not connected to database",
                "timestamp": utc_now().isoformat()
            }
            self.last_health = report
            return report

        try:
            loop = asyncio.get_running_loop()
            start = loop.time()
            await self.client.admin.command('ping')
            latency = (loop.time() - start) * 1000

            stats = await self.database.command("dbStats")

            report = {
                "connected": True,
                "status": self.state.value,
                "latency_ms": round(latency, 2),
                "database": self.config.database,
                "collections": stats.get("collections", 0),
                "data_size": stats.get("dataSize", 0),
                "index_size": stats.get("indexSize", 0),
                "timestamp": utc_now().isoformat()
            }

        except Exception as e:
            logger.error(f"❌ Health check failed: {e}")
            report = {
                "connected": False,
                "status": self.state.value,
                "error": str(e),
                "timestamp": utc_now().isoformat()
            }

        self.last_health = report
        return report

    def get_connection_status(self) -> Dict[str, Any]:
        """Snapshot of the state machine."""
        return {
            "state": self.state.value,
            "connected": self.is_connected,
            "retry_count": self.retry_count,
            "max_retries": self.config.max_retries,
            "database": self.config.database,
            "host": self.config.host
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Full health report: probe results, connection info and enabled features.
        """
        report = await self.perform_health_check()
        return {
            **report,
            "connection": self.get_connection_status(),
            "features": {
                "health_checks": self.config.health_check_interval_ms > 0,
                "heartbeat_monitoring": True,
                "retry_strategy": self.config.retry_strategy.value,
                "retry_writes": self.RETRY_WRITES
            }
        }

    # ==================== ACCESS ====================

    def get_database(self):
        """
        Borrow the live database handle.

        Raises:
            DatabaseConnectionError: if no connection was established
        """
        if self.database is None:
            raise DatabaseConnectionError("Not connected to MongoDB")
        return self.database

    def get_collection(self, name: str):
        """
        Get collection by name.

        Args:
            name: Collection name

        Returns:
            AsyncIOMotorCollection instance
        """
        return self.get_database()[name]

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self.state == ConnectionState.CONNECTED and self.database is not None

    # ==================== SHUTDOWN ====================

    async def graceful_shutdown(self) -> None:
        """Stop background tasks and close the client. Safe to call repeatedly."""
        self._shutting_down = True

        for task in (self._health_task, self._reconnect_task):
            await self._cancel_task(task)
        self._health_task = None
        self._reconnect_task = None

        async with self._lock:
            if self.client is None:
                self.state = ConnectionState.DISCONNECTED
                return

            self._close_client()
            self.state = ConnectionState.DISCONNECTED

        logger.info("🔌 Disconnected from MongoDB")

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.graceful_shutdown()
