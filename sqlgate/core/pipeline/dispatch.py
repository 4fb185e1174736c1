import logging
from dataclasses import dataclass
from typing import Any, List, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from sqlgate.core import schemas
from sqlgate.core.exceptions import (
    ExecutionError,
    ParameterTypeError,
    ShapeMismatchError,
)
from sqlgate.core.pipeline.marshal import materialize_row, to_parameters

# -----------------------------------------------------------------------------
# DISPATCH MODULE - Statement execution
# Purpose: Decide whether a request is a single statement or a batch, check its
# shape and run it on the connection
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleStatement:
    sql: str
    args: List[Any]


@dataclass(frozen=True)
class BatchStatement:
    statements: List[str]
    arg_groups: List[Any]


Statement = Union[SingleStatement, BatchStatement]


def classify(request: schemas.QueryRequest) -> Statement:
    """
    Tag a request as single or batch from the type of `sql`.

    Shape problems are raised here, before anything touches the connection:
    - a single statement whose arguments contain nested argument lists
    - statement and argument lists of different lengths
    - a batch whose arguments are a flat list instead of one list per statement
    """
    if isinstance(request.sql, str):
        if any(isinstance(arg, list) for arg in request.args):
            raise ShapeMismatchError(
                "single statement arguments must be a flat list of scalars"
            )
        return SingleStatement(sql=request.sql, args=list(request.args))

    statements = list(request.sql)
    arg_groups = list(request.args)

    if len(statements) != len(arg_groups):
        raise ShapeMismatchError(
            f"batch has {len(statements)} statements but {len(arg_groups)} argument groups"
        )

    if arg_groups and not any(isinstance(group, list) for group in arg_groups):
        raise ShapeMismatchError("batch arguments must be a list of argument lists")

    return BatchStatement(statements=statements, arg_groups=arg_groups)


class StatementDispatcher:
    """Runs classified statements on a connection handed over by the gate."""

    def __init__(self, atomic_batches: bool = False):
        self.atomic_batches = atomic_batches

    async def execute(
        self, statement: Statement, connection: AsyncConnection
    ) -> List[List[Any]]:
        if isinstance(statement, SingleStatement):
            return await self.execute_single(statement, connection)
        if isinstance(statement, BatchStatement):
            await self.execute_batch(statement, connection)
            return []
        raise TypeError(f"unknown statement type {type(statement).__name__}")

    async def execute_single(
        self, statement: SingleStatement, connection: AsyncConnection
    ) -> List[List[Any]]:
        params = to_parameters(statement.args)

        try:
            result = await connection.exec_driver_sql(statement.sql, params)
            rows = []
            if result.returns_rows:
                rows = [materialize_row(row) for row in result.fetchall()]
            await connection.commit()
        except SQLAlchemyError as error:
            await connection.rollback()
            logger.error(f"Query failed: {error}")
            raise ExecutionError("statement failed") from error

        return rows

    async def execute_batch(
        self, statement: BatchStatement, connection: AsyncConnection
    ):
        """
        Run every statement of a batch in order, discarding result rows.

        Without atomic_batches each statement commits on its own, so a failure
        leaves the statements before it applied. With atomic_batches the whole
        batch is one transaction and a failure rolls all of it back.
        """
        if self.atomic_batches:
            await connection.exec_driver_sql("BEGIN")

        try:
            for index, (sql, group) in enumerate(
                zip(statement.statements, statement.arg_groups)
            ):
                if not isinstance(group, list):
                    raise ParameterTypeError(
                        f"argument group {index} is not a list of arguments"
                    )
                params = to_parameters(group)

                try:
                    await connection.exec_driver_sql(sql, params)
                except SQLAlchemyError as error:
                    logger.error(f"Batch statement {index} failed: {error}")
                    raise ExecutionError(f"batch statement {index} failed") from error

                if not self.atomic_batches:
                    await connection.commit()

            if self.atomic_batches:
                await connection.commit()
        except Exception:
            await connection.rollback()
            raise
