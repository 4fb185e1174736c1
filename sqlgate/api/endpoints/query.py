import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from sqlgate.core import schemas
from sqlgate.core.pipeline.executor import QueryPipeline, get_pipeline

router = APIRouter(tags=["Query"])

logger = logging.getLogger(__name__)

pipeline_dep = Annotated[QueryPipeline, Depends(get_pipeline)]


@router.post("/", response_model=schemas.QueryResponse)
async def run_query(payload: schemas.QueryRequest, pipeline: pipeline_dep):
    """
    Execute one statement or a batch of statements.

    Every failure answers 500 with an empty row list; the reason only goes to
    the server log.
    """
    logger.debug(f"Received SQL {payload.sql!r} with args {payload.args!r}")

    try:
        return await pipeline.run(payload)
    except Exception as error:
        logger.error(f"Request failed: {type(error).__name__}: {error}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=schemas.QueryResponse().model_dump(),
        )
