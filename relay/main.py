import asyncio
import signal
import sys
from contextlib import AsyncExitStack
from typing import Optional

from pydantic import ValidationError

from relay.core.aws import build_session, client_kwargs
from relay.core.config import Settings, get_settings
from relay.core.database import DatabaseManager, build_engine, build_session_factory
from relay.core.exceptions import ConfigValidationError
from relay.core.logging import setup_logging, get_logger
from relay.core.queue_policies import RelayPolicy
from relay.core.redis_client import RedisClient
from relay.services import (
    QueueService, DurableStore, SQSQueueService, RedisQueueService, DynamoDBStore, PostgresStore,
)
from relay.workers.relay_loop import RelayLoop

logger = get_logger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_STARTUP_ERROR = 1


class Backends:
    """Long-lived backend clients, opened once and closed on exit."""

    def __init__(self, settings: Settings, stack: AsyncExitStack):
        self.settings = settings
        self.stack = stack
        self._aws_session = None

    @property
    def aws_session(self):
        if self._aws_session is None:
            self._aws_session = build_session(self.settings)
        return self._aws_session

    async def aws_client(self, service_name: str):
        return await self.stack.enter_async_context(
            self.aws_session.client(service_name, **client_kwargs(self.settings))
        )

    async def build_queue(self) -> QueueService:
        settings = self.settings
        if settings.QUEUE_BACKEND == "sqs":
            client = await self.aws_client("sqs")
            return SQSQueueService(client, settings.SQS_URL, settings.DEAD_LETTER_QUEUE_URL)

        redis_client = RedisClient(settings.REDIS_URL, settings.REDIS_MAX_CONNECTIONS)
        await redis_client.connect()
        self.stack.push_async_callback(redis_client.disconnect)
        return RedisQueueService(redis_client, settings.REDIS_QUEUE_NAME)

    async def build_store(self) -> DurableStore:
        settings = self.settings
        if settings.STORE_BACKEND == "dynamodb":
            client = await self.aws_client("dynamodb")
            return DynamoDBStore(client, settings.DDB_TABLE)

        engine = build_engine(settings.DATABASE_URL, settings.DATABASE_POOL_SIZE, settings.DATABASE_MAX_OVERFLOW)
        db_manager = DatabaseManager(engine)
        self.stack.push_async_callback(db_manager.close_connections)
        if settings.CREATE_TABLES:
            await db_manager.create_tables()
        return PostgresStore(build_session_factory(engine))


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM so the loop exits after the current cycle."""
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig: signal.Signals):
        logger.info("relay.shutdown_requested", signal=sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            logger.debug("relay.signal_handlers_unsupported", signal=sig.name)


async def serve(settings: Settings, stop_event: Optional[asyncio.Event] = None) -> int:
    """Open the backends, run the relay until it stops and return the process exit code."""
    stop_event = stop_event or asyncio.Event()

    logger.info(
        "relay.configured",
        app=settings.APP_NAME,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        queue_backend=settings.QUEUE_BACKEND,
        queue=settings.queue_ref,
        store_backend=settings.STORE_BACKEND,
        store=settings.table_ref,
        aws_profile=settings.AWS_PROFILE,
        poison_message_policy=settings.POISON_MESSAGE_POLICY,
        max_receive_count=settings.MAX_RECEIVE_COUNT,
    )

    async with AsyncExitStack() as stack:
        backends = Backends(settings, stack)
        try:
            queue = await backends.build_queue()
            store = await backends.build_store()
        except Exception as e:
            logger.exception("relay.startup_failed", error=str(e))
            return EXIT_STARTUP_ERROR

        relay = RelayLoop(queue, store, RelayPolicy.from_settings(settings))
        outcome = await relay.run(stop_event)

    logger.info("relay.exited", reason=outcome.reason, exit_code=outcome.exit_code)
    return outcome.exit_code


async def _main(settings: Settings) -> int:
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)
    return await serve(settings, stop_event)


def main() -> None:
    """Console entry point."""
    try:
        settings = get_settings()
        settings.validate_required()
    except (ValidationError, ConfigValidationError) as e:
        setup_logging()
        logger.error("relay.config_invalid", error=str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    sys.exit(asyncio.run(_main(settings)))


if __name__ == "__main__":
    main()
