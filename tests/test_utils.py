"""Tests for shared utility functions."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import pytest

from mentionbot.utils import chunked, create_background_task, write_json_atomic


class TestChunked:
    def test_even_split(self):
        assert chunked([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_remainder_in_last_chunk(self):
        assert chunked(range(5), 2) == [[0, 1], [2, 3], [4]]

    def test_empty(self):
        assert chunked([], 20) == []

    def test_size_larger_than_input(self):
        assert chunked(["a"], 20) == [["a"]]

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            chunked([1], 0)


class TestWriteJsonAtomic:
    def test_creates_parents_and_writes(self, tmp_path):
        target = tmp_path / "nested" / "doc.json"
        write_json_atomic(target, {"a": [1]}, indent=2)
        assert json.loads(target.read_text()) == {"a": [1]}

    def test_leaves_no_temp_file(self, tmp_path):
        target = tmp_path / "doc.json"
        write_json_atomic(target, {"a": 1})
        write_json_atomic(target, {"a": 2})
        assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]
        assert json.loads(target.read_text()) == {"a": 2}


class TestCreateBackgroundTask:
    async def test_returns_result(self):
        async def work():
            return 42

        task = create_background_task(work(), name="work")
        assert await task == 42
        assert task.get_name() == "work"

    async def test_failure_is_logged(self):
        async def boom():
            raise RuntimeError("boom")

        with patch("mentionbot.utils.logger") as mock_logger:
            task = create_background_task(boom(), name="boom-task")
            with pytest.raises(RuntimeError):
                await task
            await asyncio.sleep(0)

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs["task_name"] == "boom-task"

    async def test_cancellation_is_not_logged(self):
        with patch("mentionbot.utils.logger") as mock_logger:
            task = create_background_task(asyncio.sleep(10), name="sleeper")
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await asyncio.sleep(0)

        mock_logger.error.assert_not_called()
