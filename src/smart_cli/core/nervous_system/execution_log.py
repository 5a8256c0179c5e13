"""Execution Log — bounded, newest-first history of executed commands.

Architecture: Nervous System component.
Every finished execution lands here exactly once. The log is best-effort:
a missing or corrupt store reads as empty history, and a failed write is
logged and dropped, never surfaced to the command's caller.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from ..exceptions import LogPersistenceError
from ..types import LogRecord

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... (truncated)"


def truncate_output(output: Optional[str], max_length: int = 10000) -> str:
    """Cap text for storage.

    Args:
        output: Text to cap (None is treated as empty)
        max_length: Characters kept before the marker

    Returns:
        The text unchanged if it fits, else its first ``max_length``
        characters followed by TRUNCATION_MARKER
    """
    if not output:
        return ""
    if len(output) <= max_length:
        return output
    return output[:max_length] + TRUNCATION_MARKER


class ExecutionLog:
    """Persistent execution history.

    Records are kept newest-first and trimmed to ``max_entries``; the oldest
    ones drop off the end.

    Storage: JSON array file (data/logs.json), replaced atomically on write
    so a crash leaves either the old or the new history, never half of one.
    """

    MAX_ENTRIES = 100

    def __init__(self, logs_file: str = "./data/logs.json", max_entries: int = MAX_ENTRIES):
        """Initialize execution log.

        Args:
            logs_file: Path of the JSON history file
            max_entries: Capacity; older records are evicted past this
        """
        self.logs_file = Path(logs_file)
        self.max_entries = max_entries
        self._write_lock = asyncio.Lock()

    async def load(self) -> List[LogRecord]:
        """Read the history, newest first. Never raises."""
        raw = await self._read_raw()
        records = []
        for item in raw:
            try:
                records.append(LogRecord.from_dict(item))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed log record: {e}")
        return records

    async def append(self, record: LogRecord) -> bool:
        """Insert a record at the front and trim to capacity.

        Returns:
            True if the history was persisted, False if the write failed
        """
        async with self._write_lock:
            entries = await self._read_raw()
            entries.insert(0, record.to_dict())
            del entries[self.max_entries:]

            try:
                await self._save(entries)
            except LogPersistenceError as e:
                logger.error(f"Error saving logs: {e.message}")
                return False

        logger.debug(f"Logged execution: {record.command} ({record.status.value})")
        return True

    async def _read_raw(self) -> List[Dict[str, Any]]:
        if not self.logs_file.exists():
            return []
        try:
            async with aiofiles.open(self.logs_file, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.error(f"Error loading logs: {e}")
            return []

        if not isinstance(data, list):
            logger.error(f"Error loading logs: expected a list, got {type(data).__name__}")
            return []
        return [item for item in data if isinstance(item, dict)]

    async def _save(self, entries: List[Dict[str, Any]]):
        tmp_file = self.logs_file.with_name(f"{self.logs_file.name}.{os.getpid()}.tmp")
        try:
            self.logs_file.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_file, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(entries, indent=2, default=str))
                await f.flush()
                await asyncio.get_running_loop().run_in_executor(None, os.fsync, f.fileno())
            await aiofiles.os.replace(tmp_file, self.logs_file)
        except OSError as e:
            if tmp_file.exists():
                tmp_file.unlink(missing_ok=True)
            raise LogPersistenceError(str(e), path=str(self.logs_file)) from e
