from __future__ import annotations

import asyncio
import logging

from assessment_engine.core.request_context import (
    _RequestContextFilter,
    new_request_id,
    request_id_var,
    request_scope,
    session_id_var,
    session_scope,
)


def _record() -> logging.LogRecord:
    return logging.LogRecord("t", logging.INFO, "t.py", 1, "msg", (), None)


def test_new_request_id_is_hex() -> None:
    rid = new_request_id()
    assert len(rid) == 32
    int(rid, 16)


def test_request_scope_binds_and_resets() -> None:
    assert request_id_var.get() == "-"
    with request_scope("req-1") as rid:
        assert rid == "req-1"
        assert request_id_var.get() == "req-1"
    assert request_id_var.get() == "-"


def test_request_scope_generates_id_when_missing() -> None:
    with request_scope() as rid:
        assert rid != "-"
        assert request_id_var.get() == rid


def test_filter_stamps_current_ids() -> None:
    record = _record()
    with request_scope("req-9"), session_scope("sess-1"):
        _RequestContextFilter().filter(record)
    assert record.request_id == "req-9"  # type: ignore[attr-defined]
    assert record.session_id == "sess-1"  # type: ignore[attr-defined]


def test_filter_keeps_explicit_extra() -> None:
    record = _record()
    record.request_id = "from-extra"  # type: ignore[attr-defined]
    with request_scope("req-9"):
        _RequestContextFilter().filter(record)
    assert record.request_id == "from-extra"  # type: ignore[attr-defined]


def test_concurrent_tasks_see_their_own_request_id() -> None:
    async def worker(name: str) -> str:
        with request_scope(name):
            await asyncio.sleep(0)
            return request_id_var.get()

    async def main() -> list[str]:
        return await asyncio.gather(worker("a"), worker("b"), worker("c"))

    assert asyncio.run(main()) == ["a", "b", "c"]
    assert session_id_var.get() == "-"
