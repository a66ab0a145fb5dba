import asyncio
import time
from collections import deque

from fastapi import FastAPI
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Service")

# Requests per second the demo target accepts before answering 429.
CAPACITY_RPS = 300
# Extra latency added per request already seen in the current second.
LATENCY_PER_INFLIGHT_MS = 0.5

_recent = deque()


def current_load(now: float) -> int:
    """Number of requests received during the last second, including this one."""
    _recent.append(now)
    while _recent and _recent[0] <= now - 1.0:
        _recent.popleft()
    return len(_recent)


def reset() -> None:
    _recent.clear()


@app.get("/api/demo")
async def demo():
    load = current_load(time.monotonic())
    if load > CAPACITY_RPS:
        return JSONResponse(status_code=429, content={"message": "slow down"})
    await asyncio.sleep(load * LATENCY_PER_INFLIGHT_MS / 1000)
    return {"message": "ok", "load": load}


@app.get("/health")
async def health():
    return {"status": "ok"}


# Run with: uvicorn mock_service.app:app --port 8001
# Then:     rampbench run --url http://localhost:8001/api/demo --max-rate 600 -d 5
