import os
import unittest

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from auth.container import build_container
from auth.exceptions import ErrorKind
from auth.services.base import TransactionalService
from db.engine import async_url, build_engine, sync_url

from support import COUNTRY_CODE, PHONE, Harness


class LockNotAvailable(Exception):
    sqlstate = "55P03"


class TestDriverUrls(unittest.TestCase):
    def test_async_drivers(self):
        self.assertEqual(async_url("postgresql://u:p@db/identity").drivername, "postgresql+asyncpg")
        self.assertEqual(async_url("postgresql+psycopg2://u:p@db/identity").drivername, "postgresql+asyncpg")
        self.assertEqual(async_url("sqlite:///./identity.db").drivername, "sqlite+aiosqlite")

    def test_sync_drivers_for_migrations(self):
        self.assertEqual(sync_url("postgresql+asyncpg://u:p@db/identity").drivername, "postgresql+psycopg2")
        self.assertEqual(sync_url("sqlite+aiosqlite:///./identity.db").drivername, "sqlite+pysqlite")


class TestTransactionScope(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.h = Harness(RETRY_MAX_ATTEMPTS=3, RETRY_BACKOFF_MIN_SECONDS=0, RETRY_BACKOFF_MAX_SECONDS=0)

    async def asyncTearDown(self):
        self.h.close()

    async def test_unreachable_database_is_retried_then_reported(self):
        missing = os.path.join(self.h._tmp.name, "missing", "identity.db")
        engine = build_engine(f"sqlite:///{missing}", poolclass=NullPool)
        connects = []

        @event.listens_for(engine.sync_engine, "do_connect")
        def count(dialect, conn_rec, cargs, cparams):
            connects.append(cargs)

        container = build_container(
            async_sessionmaker(engine, expire_on_commit=False),
            self.h.settings,
            counter_store=self.h.counters,
            sms_provider=self.h.sms,
            email_sender=self.h.email,
            identity_provider=self.h.identity,
            broker=self.h.broker,
        )

        result = await container.orchestrator.send_code(PHONE, COUNTRY_CODE)

        self.assertEqual(result.error.kind, ErrorKind.PROVIDER_UNAVAILABLE)
        self.assertEqual(result.error.code, "DATASTORE_UNAVAILABLE")
        self.assertEqual(len(connects), 3)
        self.assertEqual(self.h.sms.sent, [])

    async def test_lock_timeout_is_retryable(self):
        service = TransactionalService(self.h.session_factory, None, self.h.broker)

        async def work(unit):
            unit.emit("never.published")
            raise DBAPIError("SELECT 1 FOR UPDATE", {}, LockNotAvailable())

        result = await service._execute("lock_timeout", work)

        self.assertEqual(result.error.kind, ErrorKind.PROVIDER_UNAVAILABLE)
        self.assertEqual(result.error.code, "DATASTORE_BUSY")
        self.assertEqual(result.error.retry_after, 1)
        self.assertEqual(self.h.broker.names(), [])

    async def test_other_database_errors_are_internal(self):
        service = TransactionalService(self.h.session_factory, None, self.h.broker)

        async def work(unit):
            raise DBAPIError("INSERT", {}, Exception("constraint"))

        result = await service._execute("insert", work)

        self.assertEqual(result.error.kind, ErrorKind.INTERNAL)


if __name__ == "__main__":
    unittest.main()
