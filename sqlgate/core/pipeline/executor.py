import logging
from typing import Any, List, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from sqlgate.core import schemas
from sqlgate.core.config import Settings
from sqlgate.core.database import create_db_engine, open_connection
from sqlgate.core.pipeline.audit import AuditLogger, audit_timestamp
from sqlgate.core.pipeline.dispatch import Statement, StatementDispatcher, classify
from sqlgate.core.pipeline.gate import ConnectionGate

# -----------------------------------------------------------------------------
# EXECUTOR MODULE - Orchestration
# Purpose: Run one request through classify -> gate -> dispatch -> audit
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


class QueryPipeline:
    def __init__(
        self,
        gate: ConnectionGate,
        dispatcher: StatementDispatcher,
        audit: Optional[AuditLogger] = None,
        request_timeout: Optional[float] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.gate = gate
        self.dispatcher = dispatcher
        self.audit = audit
        self.request_timeout = request_timeout
        self._engine = engine

    async def run(self, request: schemas.QueryRequest) -> schemas.QueryResponse:
        """
        Execute a request and return its rows.

        Shape errors are raised before the gate is entered. Everything else
        happens inside one gate job: execution, then the audit row when auditing
        is on, whether or not execution succeeded.

        Raises:
            GatewayError subclasses; the caller maps all of them to one failure.
        """
        statement = classify(request)

        async def job(connection: AsyncConnection) -> List[List[Any]]:
            return await self._execute(request, statement, connection)

        rows = await self.gate.with_connection(job, timeout=self.request_timeout)
        return schemas.QueryResponse(rows=rows)

    async def _execute(
        self,
        request: schemas.QueryRequest,
        statement: Statement,
        connection: AsyncConnection,
    ) -> List[List[Any]]:
        started_at = audit_timestamp()
        try:
            return await self.dispatcher.execute(statement, connection)
        finally:
            finished_at = audit_timestamp()
            if self.audit is not None:
                await self.audit.record(connection, request, started_at, finished_at)

    async def close(self):
        await self.gate.close()
        if self._engine is not None:
            await self._engine.dispose()


async def build_pipeline(settings: Settings) -> QueryPipeline:
    """
    Open the database described by `settings` and start serving it.

    Raises StartupError when the data file, pragmas or extensions fail.
    """
    engine = create_db_engine(settings)
    try:
        connection = await open_connection(engine, settings)
    except Exception:
        await engine.dispose()
        raise

    gate = ConnectionGate(connection)
    gate.start()

    return QueryPipeline(
        gate=gate,
        dispatcher=StatementDispatcher(atomic_batches=settings.atomic_batches),
        audit=AuditLogger() if settings.collect_metadata else None,
        request_timeout=settings.request_timeout,
        engine=engine,
    )


# Bridge that gives the endpoints the pipeline created in the app lifespan
def get_pipeline(request: Request) -> QueryPipeline:
    return request.app.state.pipeline
