"""JSON-lines file sink."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional, Union

import aiofiles

from ..core.record import TraceRecord
from .base import Sink


class FileSink(Sink):
    """Appends one JSON object per record to ``path``."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        self._lock: Optional[asyncio.Lock] = None

    async def export(self, record: TraceRecord) -> None:
        line = json.dumps(record.to_dict(), default=str) + "\n"
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            async with aiofiles.open(self.path, "a", encoding="utf-8") as handle:
                await handle.write(line)
