"""
Decision Logger: records every terminal classification decision.

The similarity thresholds and confidence bounds are tuned by hand. This log
gives the data to re-tune them: which path each idea took, the best cosine
similarity seen, and the confidence that was stored.

Log format (JSONL):
{"type": "decision", "timestamp": 1234567890.0, "plan_id": "p1", "idea_id": "i1", "path": "tie_break", ...}
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional

import aiofiles

from config import get_settings

logger = logging.getLogger(__name__)


class DecisionLogger:
    """Async JSONL writer for classification decisions."""

    def __init__(self, filepath: str = None):
        settings = get_settings()
        self.filepath = filepath or settings.decision_log_path
        self._ensure_directory()

    def _ensure_directory(self):
        directory = Path(self.filepath).parent
        directory.mkdir(parents=True, exist_ok=True)

    async def log_decision(
        self,
        plan_id: str,
        idea_id: str,
        path: str,
        bucket_id: str,
        confidence: int,
        is_new_bucket: bool,
        best_similarity: Optional[float] = None
    ):
        entry = {
            "type": "decision",
            "timestamp": time.time(),
            "plan_id": plan_id,
            "idea_id": idea_id,
            "path": path,
            "bucket_id": bucket_id,
            "confidence": confidence,
            "is_new_bucket": is_new_bucket,
            "best_similarity": best_similarity
        }
        await self._write_entry(entry)

    async def _write_entry(self, entry: dict):
        try:
            async with aiofiles.open(self.filepath, mode='a') as f:
                await f.write(json.dumps(entry) + "\n")
        except OSError:
            # Logging must never fail a classification
            logger.warning("DecisionLogger write error", exc_info=True)

    def read_decisions(self, limit: int = None) -> list[dict]:
        """Read logged decisions synchronously (for analysis scripts)."""
        entries = []

        if not os.path.exists(self.filepath):
            return entries

        with open(self.filepath, 'r') as f:
            for i, line in enumerate(f):
                if limit and i >= limit:
                    break
                try:
                    entries.append(json.loads(line.strip()))
                except json.JSONDecodeError:
                    continue

        return entries

    def path_counts(self) -> dict[str, int]:
        """Tally decisions by classification path."""
        counts: dict[str, int] = {}
        for entry in self.read_decisions():
            if entry.get("type") != "decision":
                continue
            path = entry.get("path", "unknown")
            counts[path] = counts.get(path, 0) + 1
        return counts
