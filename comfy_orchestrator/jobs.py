"""
Job tracking and recovery

Every prompt submitted to a ComfyUI deployment is recorded until its outputs
have been collected. Jobs left "running" longer than the orphan age (for
instance across a restart) are probed against /queue and /history: finished
ones are recovered together with their images, vanished ones are marked
failed.

The backing store is any object with async get/set/delete/values over
JSON-compatible dicts.
"""

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .comfyui_client import OutputImage, fetch_output_images
from .config import Settings

logger = logging.getLogger(__name__)

# Finished jobs older than this are dropped by cleanup()
FINISHED_JOB_MAX_AGE = 24 * 60 * 60


class JobStatus(str, Enum):
    RUNNING = "running"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class TrackedJob:
    prompt_id: str
    prompt: str = ""
    model: str = ""
    deployment: str = ""
    status: str = JobStatus.RUNNING.value
    start_time: float = field(default_factory=time.time)
    last_check: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedJob":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class JobCheck:
    status: JobStatus
    entry: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class RecoveredJob:
    job: TrackedJob
    outputs: Dict[str, Any]
    images: List[OutputImage]


class MemoryJobStore:
    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def values(self) -> List[Dict[str, Any]]:
        return list(self._data.values())


class JsonFileJobStore(MemoryJobStore):
    """MemoryJobStore mirrored to a JSON file so tracked jobs survive a restart."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._load()

    def _load(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load tracked jobs from {self.path}: {e}")
            return
        if isinstance(data, dict):
            self._data = {k: v for k, v in data.items() if isinstance(v, dict)}
        logger.info(f"Loaded {len(self._data)} tracked jobs from {self.path}")

    def _save(self):
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp, self.path)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        await super().set(key, value)
        self._save()

    async def delete(self, key: str) -> None:
        await super().delete(key)
        self._save()


def _in_queue(items: Any, prompt_id: str) -> bool:
    # Queue items are [number, prompt_id, prompt, extra, outputs]
    for item in items or []:
        if isinstance(item, (list, tuple)) and prompt_id in item[:2]:
            return True
    return False


class JobTracker:
    def __init__(self, store=None, orphan_age: Optional[float] = None):
        self.store = store if store is not None else MemoryJobStore()
        self.orphan_age = orphan_age if orphan_age is not None else Settings.JOB_ORPHAN_AGE

    async def track(self, prompt_id: str, prompt: str = "", model: str = "", deployment: str = "") -> TrackedJob:
        job = TrackedJob(prompt_id=prompt_id, prompt=prompt, model=model, deployment=deployment)
        await self.store.set(prompt_id, job.to_dict())
        logger.info(f"Tracking job {prompt_id}")
        return job

    async def get(self, prompt_id: str) -> Optional[TrackedJob]:
        data = await self.store.get(prompt_id)
        return TrackedJob.from_dict(data) if data else None

    async def update(self, prompt_id: str, **changes) -> bool:
        job = await self.get(prompt_id)
        if job is None:
            return False
        for name, value in changes.items():
            setattr(job, name, value.value if isinstance(value, JobStatus) else value)
        job.last_check = time.time()
        await self.store.set(prompt_id, job.to_dict())
        return True

    async def complete(self, prompt_id: str) -> bool:
        """Forget a job whose outputs were delivered."""
        if await self.store.get(prompt_id) is None:
            return False
        await self.store.delete(prompt_id)
        logger.info(f"Completed job {prompt_id}")
        return True

    async def fail(self, prompt_id: str, error: str) -> bool:
        return await self.update(prompt_id, status=JobStatus.FAILED, error=error)

    async def jobs(self) -> List[TrackedJob]:
        return [TrackedJob.from_dict(data) for data in await self.store.values()]

    async def orphaned(self, max_age: Optional[float] = None, now: Optional[float] = None) -> List[TrackedJob]:
        max_age = self.orphan_age if max_age is None else max_age
        now = time.time() if now is None else now
        return [
            job for job in await self.jobs()
            if job.status == JobStatus.RUNNING.value
            and now - (job.last_check or job.start_time) >= max_age
        ]

    async def cleanup(self, max_age: float = FINISHED_JOB_MAX_AGE, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        finished = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
        cleaned = 0
        for job in await self.jobs():
            if job.status in finished and now - (job.last_check or job.start_time) > max_age:
                await self.store.delete(job.prompt_id)
                cleaned += 1
        if cleaned:
            logger.info(f"Cleaned up {cleaned} old jobs")
        return cleaned

    async def stats(self) -> Dict[str, int]:
        jobs = await self.jobs()
        counts = {status.value: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status] = counts.get(job.status, 0) + 1
        counts["total"] = len(jobs)
        counts["orphaned"] = len(await self.orphaned())
        return counts

    @staticmethod
    async def check_status(client, prompt_id: str) -> JobCheck:
        """Locate a prompt on a ComfyUI server: queued, finished or gone."""
        try:
            queue = await client.get_queue()
            if _in_queue(queue.get("queue_running"), prompt_id):
                return JobCheck(JobStatus.RUNNING)
            if _in_queue(queue.get("queue_pending"), prompt_id):
                return JobCheck(JobStatus.PENDING)
            entry = await client.get_history(prompt_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to check job status for {prompt_id}: {e}")
            return JobCheck(JobStatus.ERROR, error=str(e))

        if not entry:
            return JobCheck(JobStatus.NOT_FOUND)
        status = entry.get("status") or {}
        if status.get("status_str") == "error":
            return JobCheck(JobStatus.FAILED, entry, error="execution reported an error")
        return JobCheck(JobStatus.COMPLETED, entry)

    async def recover_orphaned(self, client) -> List[RecoveredJob]:
        orphans = await self.orphaned()
        if not orphans:
            logger.info("No orphaned jobs found")
            return []

        logger.info(f"Found {len(orphans)} orphaned jobs, checking status...")
        recovered: List[RecoveredJob] = []
        for job in orphans:
            check = await self.check_status(client, job.prompt_id)
            if check.status == JobStatus.COMPLETED:
                outputs = check.entry.get("outputs") or {}
                images = await fetch_output_images(client, outputs)
                await self.update(job.prompt_id, status=JobStatus.COMPLETED)
                recovered.append(RecoveredJob(job, outputs, images))
            elif check.status in (JobStatus.NOT_FOUND, JobStatus.FAILED):
                await self.update(
                    job.prompt_id, status=JobStatus.FAILED, error=check.error or "job vanished from ComfyUI"
                )
            else:
                # Still queued or server unreachable; stays running and is rechecked after another orphan age
                await self.update(job.prompt_id, error=check.error)

        logger.info(f"Recovered {len(recovered)} completed jobs")
        return recovered
