import asyncio
import json
from pathlib import Path

import pytest

from sqlnb_engine import server
from sqlnb_engine.errors import InvalidCellNameError


def _notebook(tmp_path: Path) -> str:
    p = tmp_path / "t.sqlnb"
    cells = [
        {"type": "sql", "id": "c1", "content": "SELECT 1 AS x", "name": "base"},
        {"type": "sql", "id": "c2", "content": "SELECT x + 1 AS y FROM base", "name": "next"},
        {"type": "sql", "id": "c3", "content": "SELECT * FROM next"},
    ]
    p.write_text(json.dumps({"version": 1, "name": "t", "cells": cells}), encoding="utf-8")
    return str(p)


def test_executing_cells_tracks_state(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SQLNB_DATABASE", ":memory:")
    p = _notebook(tmp_path)

    async def _run() -> None:
        first = await server.notebook_execute_cell(p, "c1")
        assert first["status"] == "completed"

        second = await server.notebook_execute_cell(p, "c2")
        assert second["result"]["rows"] == [[2]]

        third = await server.notebook_execute_cell(p, "c3")
        assert third["result"]["rows"] == [[2]]

        assert server.notebook_stale_cells(p) == []

        await server.notebook_execute_cell(p, "c1")
        assert server.notebook_stale_cells(p) == ["c2", "c3"]

        state = {s["cell_id"]: s["status"] for s in server.notebook_state(p)["cells"]}
        assert state == {"c1": "executed", "c2": "stale", "c3": "stale"}

        plan = server.notebook_rerun_plan(p, "c3")
        assert plan["cells_to_rerun"] == ["c2", "c3"]

        server._execution_manager().drop_session(p)

    asyncio.run(_run())


def test_submit_and_poll_status(tmp_path: Path) -> None:
    p = _notebook(tmp_path)

    async def _run() -> None:
        submitted = await server.notebook_execution_submit(p, "c1")
        eid = submitted["execution_id"]

        for _ in range(200):
            status = server.notebook_execution_status(eid)
            if status["status"] == "completed":
                break
            await asyncio.sleep(0.05)

        assert status["status"] == "completed"
        assert server.notebook_state(p)["cells"][0]["status"] == "executed"

        server._execution_manager().drop_session(p)

    asyncio.run(_run())


def test_rename_preview_validates_name(tmp_path: Path) -> None:
    p = _notebook(tmp_path)

    preview = server.notebook_rename_preview(p, "c1", "source")
    assert [patch["cell_id"] for patch in preview["patches"]] == ["c2"]

    with pytest.raises(InvalidCellNameError):
        server.notebook_rename_preview(p, "c1", "NEXT")
    with pytest.raises(InvalidCellNameError):
        server.notebook_rename_preview(p, "c1", "__nb_cell_x")


def test_analyze_is_json_ready(tmp_path: Path) -> None:
    p = _notebook(tmp_path)

    out = server.notebook_analyze(p)

    assert json.loads(json.dumps(out))["graph"]["edges"]["c2"] == ["c1"]


def test_blob_result_is_returned_as_json(tmp_path: Path) -> None:
    p = tmp_path / "blob.sqlnb"
    cells = [{"type": "sql", "id": "a", "content": "SELECT '\\xFF'::BLOB AS b"}]
    p.write_text(json.dumps({"version": 1, "name": "t", "cells": cells}), encoding="utf-8")

    async def _run() -> None:
        out = await server.notebook_execute_cell(str(p), "a")

        assert out["status"] == "completed"
        assert json.loads(json.dumps(out))["result"]["rows"] == [["/w=="]]

        server._execution_manager().drop_session(str(p))

    asyncio.run(_run())
