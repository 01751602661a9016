"""Redis-backed queue shared by every process of a deployment.

Keys per queue ``q`` under ``prefix``::

    {prefix}:{q}:job:{id}     job JSON (SET NX = dedup; completed jobs expire)
    {prefix}:{q}:waiting      zset of due/delayed ids scored by run_at
    {prefix}:{q}:active       zset of running ids scored by lease expiry
    {prefix}:{q}:failed       zset of terminal ids scored by finish time
    {prefix}:{q}:completed    zset of succeeded ids scored by finish time
    {prefix}:{q}:lock         single-flight lock (token, PX = lease)
    {prefix}:{q}:repeat       hash of repeatables
    {prefix}:queues           set of known queue names
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from fxpipe.core.config import settings
from fxpipe.core.logging import get_logger
from fxpipe.jobs.queue import Job, JobState, QueueBackend, Repeatable, WAITING_STATES, utcnow

log = get_logger("jobs.redis")

# Delete the lock only if we still own it
RELEASE_LOCK = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

STATE_SETS = {
    JobState.SCHEDULED: "waiting",
    JobState.ENQUEUED: "waiting",
    JobState.RETRYING: "waiting",
    JobState.RUNNING: "active",
    JobState.FAILED: "failed",
    JobState.SUCCEEDED: "completed",
}


def create_redis_pool(url: Optional[str] = None) -> redis.ConnectionPool:
    return redis.ConnectionPool.from_url(url or settings.REDIS_URL, decode_responses=True)


class RedisQueueBackend(QueueBackend):
    def __init__(self, pool: redis.ConnectionPool, prefix: Optional[str] = None, completed_ttl_seconds: Optional[int] = None):
        self.redis = redis.Redis(connection_pool=pool)
        self.prefix = prefix or settings.QUEUE_PREFIX
        self.completed_ttl = completed_ttl_seconds or settings.JOB_DEDUP_TTL_SECONDS
        self._release_lock = self.redis.register_script(RELEASE_LOCK)

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------
    def _key(self, queue: str, *parts: str) -> str:
        return ":".join([self.prefix, queue, *parts])

    def _job_key(self, queue: str, job_id: str) -> str:
        return self._key(queue, "job", job_id)

    async def _load(self, queue: str, job_id: str) -> Optional[Job]:
        raw = await self.redis.get(self._job_key(queue, job_id))
        return Job.model_validate_json(raw) if raw else None

    async def _store(self, job: Job, ttl: Optional[int] = None) -> None:
        await self.redis.set(self._job_key(job.queue, job.id), job.model_dump_json(), ex=ttl)

    async def _move(self, job: Job, score: datetime) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            for name in ("waiting", "active", "failed", "completed"):
                pipe.zrem(self._key(job.queue, name), job.id)
            pipe.zadd(self._key(job.queue, STATE_SETS[job.state]), {job.id: score.timestamp()})
            await pipe.execute()

    # -------------------------------------------------------------------------
    # Job lifecycle
    # -------------------------------------------------------------------------
    async def add(self, job: Job) -> Optional[Job]:
        created = await self.redis.set(self._job_key(job.queue, job.id), job.model_dump_json(), nx=True)
        if not created:
            return None
        await self.redis.sadd(f"{self.prefix}:queues", job.queue)
        await self._move(job, job.run_at)
        return job

    async def claim(self, queue: str, lease_seconds: float, now: Optional[datetime] = None) -> Optional[Job]:
        now = now or utcnow()
        lock_key = self._key(queue, "lock")
        token = uuid.uuid4().hex
        if not await self.redis.set(lock_key, token, nx=True, px=int(lease_seconds * 1000)):
            return None

        due = await self.redis.zrangebyscore(self._key(queue, "waiting"), "-inf", now.timestamp(), start=0, num=1)
        job = await self._load(queue, due[0]) if due else None
        if job is None or job.state not in WAITING_STATES:
            if due:
                await self.redis.zrem(self._key(queue, "waiting"), due[0])
            await self._release_lock(keys=[lock_key], args=[token])
            return None

        job.state = JobState.RUNNING
        job.attempts_made += 1
        job.started_at = now
        job.lease_until = now + timedelta(seconds=lease_seconds)
        job.lock_token = token
        await self._store(job)
        await self._move(job, job.lease_until)
        return job

    async def complete(self, job: Job, result: Any = None, now: Optional[datetime] = None) -> Job:
        now = now or utcnow()
        token = job.lock_token
        job.state = JobState.SUCCEEDED
        job.result = result
        job.finished_at = now
        job.lease_until = None
        job.lock_token = None
        await self._store(job, ttl=self.completed_ttl)
        await self._move(job, now)
        await self._release_lock(keys=[self._key(job.queue, "lock")], args=[token or ""])
        return job

    async def fail(self, job: Job, reason: str, retry_at: Optional[datetime] = None, now: Optional[datetime] = None) -> Job:
        now = now or utcnow()
        token = job.lock_token
        job.failed_reason = reason
        job.lease_until = None
        job.lock_token = None
        if retry_at is not None:
            job.state = JobState.RETRYING
            job.run_at = retry_at
            score = retry_at
        else:
            job.state = JobState.FAILED
            job.finished_at = now
            score = now
        await self._store(job)
        await self._move(job, score)
        await self._release_lock(keys=[self._key(job.queue, "lock")], args=[token or ""])
        return job

    async def recover_stalled(self, queue: str, now: Optional[datetime] = None) -> List[Job]:
        now = now or utcnow()
        stalled = await self.redis.zrangebyscore(self._key(queue, "active"), "-inf", now.timestamp())
        recovered = []
        for job_id in stalled:
            job = await self._load(queue, job_id)
            if job is None:
                await self.redis.zrem(self._key(queue, "active"), job_id)
                continue
            token = job.lock_token
            job = self._terminal_or_redeliver(job, now)
            await self._store(job)
            await self._move(job, now)
            await self._release_lock(keys=[self._key(queue, "lock")], args=[token or ""])
            log.warning(f"Recovered stalled job {queue}/{job.id} -> {job.state.value}")
            recovered.append(job)
        return recovered

    # -------------------------------------------------------------------------
    # Inspection and operator actions
    # -------------------------------------------------------------------------
    async def get_job(self, queue: str, job_id: str) -> Optional[Job]:
        return await self._load(queue, job_id)

    async def list_jobs(self, queue: str, states: Optional[List[JobState]] = None) -> List[Job]:
        sets = sorted({STATE_SETS[s] for s in states}) if states else ["waiting", "active", "failed", "completed"]
        jobs: List[Job] = []
        for name in sets:
            for job_id in await self.redis.zrange(self._key(queue, name), 0, -1):
                job = await self._load(queue, job_id)
                if job is None:
                    # Completed job whose dedup window elapsed
                    await self.redis.zrem(self._key(queue, name), job_id)
                    continue
                if not states or job.state in states:
                    jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at)

    async def remove_job(self, queue: str, job_id: str) -> bool:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._job_key(queue, job_id))
            for name in ("waiting", "active", "failed", "completed"):
                pipe.zrem(self._key(queue, name), job_id)
            results = await pipe.execute()
        return bool(results[0])

    async def clear(self, queue: str) -> None:
        keys = [key async for key in self.redis.scan_iter(match=f"{self._key(queue)}:*")]
        if keys:
            await self.redis.delete(*keys)
        await self.redis.srem(f"{self.prefix}:queues", queue)

    async def list_queues(self) -> List[str]:
        return sorted(await self.redis.smembers(f"{self.prefix}:queues"))

    async def add_repeatable(self, repeatable: Repeatable) -> Repeatable:
        await self.redis.hsetnx(self._key(repeatable.queue, "repeat"), repeatable.key, repeatable.model_dump_json())
        await self.redis.sadd(f"{self.prefix}:queues", repeatable.queue)
        raw = await self.redis.hget(self._key(repeatable.queue, "repeat"), repeatable.key)
        return Repeatable.model_validate_json(raw)

    async def list_repeatables(self, queue: str) -> List[Repeatable]:
        raw: Dict[str, str] = await self.redis.hgetall(self._key(queue, "repeat"))
        return [Repeatable.model_validate_json(value) for value in raw.values()]

    async def save_repeatable(self, repeatable: Repeatable) -> None:
        key = self._key(repeatable.queue, "repeat")
        if await self.redis.hexists(key, repeatable.key):
            await self.redis.hset(key, repeatable.key, repeatable.model_dump_json())

    async def remove_repeatable(self, queue: str, key: str) -> bool:
        return bool(await self.redis.hdel(self._key(queue, "repeat"), key))

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        await self.redis.aclose()
