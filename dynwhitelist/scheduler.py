import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class FaultPolicy(enum.Enum):
    CONTINUE = "continue"  # log the failed cycle and wait for the next tick
    STOP = "stop"  # log the failed cycle and end the worker


class PollingScheduler:
    def __init__(
        self,
        interval: float,
        cycle: Callable[[], Awaitable[Any]],
        name: str = "provider",
        fault_policy: FaultPolicy = FaultPolicy.CONTINUE,
    ):
        if interval <= 0:
            raise ValueError("interval must be greater than 0")
        self.interval = interval
        self.name = name
        self.fault_policy = fault_policy
        self.state = SchedulerState.IDLE
        self.cycles = 0
        self.published = 0
        self.fault: BaseException | None = None
        self._cycle = cycle
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self, output: asyncio.Queue) -> asyncio.Task:
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler {self.name} cannot start from state {self.state.value}")
        self.state = SchedulerState.RUNNING
        self._task = asyncio.create_task(self._supervise(output), name=f"poll-{self.name}")
        logger.info("Scheduler %s started: interval=%ss", self.name, self.interval)
        return self._task

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        self.state = SchedulerState.STOPPED
        logger.info("Scheduler %s stop requested", self.name)

    async def aclose(self, timeout: float | None = None) -> None:
        """Stop and wait for the worker; cancel it if *timeout* elapses first."""
        self.stop()
        if self._task is None or self._task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            logger.warning("Scheduler %s did not finish within %ss, cancelling", self.name, timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def publish(self, output: asyncio.Queue, document: Any) -> bool:
        if self._stop.is_set():
            logger.debug("Scheduler %s stopped, dropping document", self.name)
            return False
        put = asyncio.ensure_future(output.put(document))
        stopping = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({put, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()
            if not put.done():
                put.cancel()
        if put.done() and not put.cancelled():
            self.published += 1
            return True
        logger.debug("Scheduler %s stopped while publishing, document dropped", self.name)
        return False

    async def _supervise(self, output: asyncio.Queue) -> None:
        try:
            await self._run(output)
        except Exception as exc:
            self.fault = exc
            logger.exception("Scheduler %s worker failed", self.name)
        finally:
            self._stop.set()
            self.state = SchedulerState.STOPPED
            logger.info("Scheduler %s stopped after %d cycles", self.name, self.cycles)

    async def _run(self, output: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stop.is_set():
            ok = await self._run_cycle(output)
            if not ok and self.fault_policy is FaultPolicy.STOP:
                return

            next_tick += self.interval
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // self.interval)
                if missed:
                    logger.warning("Scheduler %s overran, coalescing %d ticks", self.name, missed)
                next_tick += missed * self.interval
            if await self._wait(max(next_tick - now, 0.0)):
                return

    async def _run_cycle(self, output: asyncio.Queue) -> bool:
        self.cycles += 1
        try:
            document = await self._cycle()
        except Exception as exc:
            logger.exception("Scheduler %s cycle %d failed", self.name, self.cycles)
            if self.fault_policy is FaultPolicy.STOP:
                self.fault = exc
            return False
        await self.publish(output, document)
        return True

    async def _wait(self, delay: float) -> bool:
        if delay <= 0:
            return self._stop.is_set()
        try:
            await asyncio.wait_for(self._stop.wait(), delay)
        except asyncio.TimeoutError:
            return False
        return True
