import json
import logging
from datetime import datetime

from pydantic_core import PydanticSerializationError
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncConnection

from sqlgate.core import models, schemas

logger = logging.getLogger(__name__)


def audit_timestamp() -> str:
    """Current local time as RFC 3339 with its UTC offset."""
    return datetime.now().astimezone().isoformat()


def serialize_payload(request: schemas.QueryRequest) -> str:
    """
    The request as JSON text.

    Strings that cannot be written as UTF-8 (lone surrogates) are kept as
    \\uXXXX escapes instead.
    """
    try:
        return request.model_dump_json()
    except PydanticSerializationError:
        return json.dumps(request.model_dump(), ensure_ascii=True)


class AuditLogger:
    """Best-effort writer of the __metadata_query table."""

    async def record(
        self,
        connection: AsyncConnection,
        request: schemas.QueryRequest,
        started_at: str,
        finished_at: str,
    ) -> None:
        # Audit is diagnostic: a failed insert is logged and never reaches the caller
        try:
            await connection.execute(
                insert(models.QueryAudit).values(
                    payload=serialize_payload(request),
                    started_at=started_at,
                    finished_at=finished_at,
                )
            )
            await connection.commit()
        except Exception as error:
            logger.warning(f"Error occurred while storing query metadata: {error}")
            try:
                await connection.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback after audit failure failed: {rollback_error}")
