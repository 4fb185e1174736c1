import json
from datetime import datetime

import pytest
from sqlalchemy import text

from sqlgate.core import schemas
from sqlgate.core.exceptions import (
    ExecutionError,
    ParameterTypeError,
    ShapeMismatchError,
)
from sqlgate.core.pipeline.audit import AuditLogger, serialize_payload


def request(sql, args):
    return schemas.QueryRequest(sql=sql, args=args)


async def audit_rows(pipeline):
    # This lookup is audited after it runs, so it only sees earlier requests
    response = await pipeline.run(
        request("SELECT payload, started_at, finished_at FROM __metadata_query ORDER BY id", [])
    )
    return response.rows


@pytest.mark.asyncio
async def test_successful_request_is_audited(pipeline):
    await pipeline.run(request("SELECT ? AS x", [42]))

    rows = await audit_rows(pipeline)
    assert len(rows) == 1

    payload, started_at, finished_at = rows[0]
    assert json.loads(payload) == {"sql": "SELECT ? AS x", "args": [42]}
    assert datetime.fromisoformat(started_at) <= datetime.fromisoformat(finished_at)
    # RFC 3339 with an explicit offset
    assert datetime.fromisoformat(started_at).tzinfo is not None


@pytest.mark.asyncio
async def test_failed_statement_is_audited(pipeline):
    with pytest.raises(ExecutionError):
        await pipeline.run(request("SELECT * FROM missing", []))

    rows = await audit_rows(pipeline)
    assert len(rows) == 1
    assert json.loads(rows[0][0])["sql"] == "SELECT * FROM missing"


@pytest.mark.asyncio
async def test_batch_is_audited_once(pipeline):
    await pipeline.run(
        request(
            ["CREATE TABLE t(v)", "INSERT INTO t(v) VALUES(?)", "INSERT INTO t(v) VALUES(?)"],
            [[], [1], [2]],
        )
    )

    rows = await audit_rows(pipeline)
    assert len(rows) == 1
    assert json.loads(rows[0][0])["args"] == [[], [1], [2]]


@pytest.mark.asyncio
async def test_shape_mismatch_is_not_audited(pipeline):
    with pytest.raises(ShapeMismatchError):
        await pipeline.run(request(["SELECT 1", "SELECT 2"], [[]]))

    assert await audit_rows(pipeline) == []


@pytest.mark.asyncio
async def test_audit_disabled_never_writes(pipeline_factory):
    pipeline = await pipeline_factory(collect_metadata=False)

    await pipeline.run(request("SELECT 1", []))
    with pytest.raises(ExecutionError):
        await pipeline.run(request("SELECT * FROM missing", []))

    response = await pipeline.run(
        request("SELECT name FROM sqlite_master WHERE name = '__metadata_query'", [])
    )
    assert response.rows == []


@pytest.mark.asyncio
async def test_audit_failure_does_not_reach_caller(pipeline):
    """With the audit table gone, requests still succeed"""
    response = await pipeline.run(request("DROP TABLE __metadata_query", []))
    assert response.rows == []

    response = await pipeline.run(request("SELECT ? AS x", ["still here"]))
    assert response.rows == [["still here"]]


@pytest.mark.asyncio
async def test_record_inserts_row(pipeline):
    async def job(connection):
        await AuditLogger().record(
            connection,
            request("SELECT 1", []),
            "2026-01-01T10:00:00+00:00",
            "2026-01-01T10:00:01+00:00",
        )
        result = await connection.execute(
            text("SELECT payload, started_at, finished_at FROM __metadata_query")
        )
        return [tuple(row) for row in result.fetchall()]

    assert await pipeline.gate.with_connection(job) == [
        (
            '{"sql":"SELECT 1","args":[]}',
            "2026-01-01T10:00:00+00:00",
            "2026-01-01T10:00:01+00:00",
        )
    ]


def test_payload_with_lone_surrogate_is_escaped():
    """Text that is not valid UTF-8 is stored as a JSON escape"""
    payload = serialize_payload(request("SELECT ?", ["\ud800"]))

    assert payload == '{"sql": "SELECT ?", "args": ["\\ud800"]}'
    assert json.loads(payload)["args"] == ["\ud800"]


@pytest.mark.asyncio
async def test_unencodable_argument_is_audited(pipeline):
    """The request fails with its own error and still leaves one audit row"""
    with pytest.raises(ParameterTypeError):
        await pipeline.run(request("SELECT ?", ["\ud800"]))

    rows = await audit_rows(pipeline)
    assert len(rows) == 1
    assert json.loads(rows[0][0]) == {"sql": "SELECT ?", "args": ["\ud800"]}


@pytest.mark.asyncio
async def test_nested_single_arguments_are_not_audited(pipeline):
    with pytest.raises(ShapeMismatchError):
        await pipeline.run(request("SELECT ?", [[1]]))

    assert await audit_rows(pipeline) == []
