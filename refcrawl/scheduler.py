"""Crawl scheduler: sliding-window pool of isolated crawl units.

Each spec is crawled by its own worker process. The scheduler starts up to
``concurrency`` units, launches the next pending unit as soon as one
completes, kills units that exceed their timeout, and serves the fetch
requests of all units through one shared Fetcher. All scheduler state lives
in one event loop; units never share memory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence

from .config import CrawlOptions
from .document import CrawlIndex, CrawlResult, SpecDescriptor
from .fetch import FetchError, Fetcher
from .protocol import (
    ERROR,
    FETCH,
    RESULT,
    STREAM_LIMIT,
    ProtocolError,
    crawl_request,
    decode,
    encode,
    fetch_reply,
)
from .registry import SpecEntry, prepare_spec_list

LOGGER = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20
# Grace period for stderr to reach EOF once the unit's processes are killed
STDERR_DRAIN_TIMEOUT = 1.0


class UnitState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timedOut"


@dataclass
class CrawlUnit:
    """One spec crawled in one worker process."""

    index: int
    spec: SpecDescriptor
    state: UnitState = UnitState.PENDING
    result: Optional[CrawlResult] = None
    started_at: Optional[float] = None

    @property
    def label(self) -> str:
        return self.spec.shortname or self.spec.url

    def start(self) -> None:
        self.state = UnitState.RUNNING
        self.started_at = time.monotonic()

    def resolve(self, result: CrawlResult, state: UnitState) -> bool:
        """Accept the first completion only. Returns False for later ones."""
        if self.result is not None:
            LOGGER.warning(
                "%s - discarding duplicate completion (%s), unit already %s",
                self.label,
                state.value,
                self.state.value,
            )
            return False
        self.result = result
        self.state = state
        return True


def load_journal(path: Path) -> Dict[str, CrawlResult]:
    """Error-free results recorded by a previous run, keyed by spec URL."""
    results: Dict[str, CrawlResult] = {}
    if not path.is_file():
        return results
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            result = CrawlResult.from_dict(json.loads(line))
        except json.JSONDecodeError:
            LOGGER.warning("Skipping corrupt journal line in %s", path)
            continue
        if not result.error:
            results[result.url] = result
    return results


class SpecCrawler:
    """Crawl a list of specs, one isolated unit per spec."""

    def __init__(
        self,
        options: Optional[CrawlOptions] = None,
        *,
        fetcher: Optional[Fetcher] = None,
        on_result: Optional[Callable[[CrawlResult], None]] = None,
    ) -> None:
        self.options = options or CrawlOptions()
        self._fetcher = fetcher
        self._on_result = on_result
        self._completed = 0
        self._total = 0

    async def crawl(self, specs: Sequence[SpecDescriptor]) -> List[CrawlResult]:
        """Return exactly one result per spec, in input order."""
        units = [CrawlUnit(index, spec) for index, spec in enumerate(specs)]
        self._total = len(units)
        self._completed = 0

        journaled: Dict[str, CrawlResult] = {}
        if self.options.journal and self.options.resume:
            journaled = load_journal(Path(self.options.journal))

        pending: Deque[CrawlUnit] = deque()
        for unit in units:
            previous = journaled.get(unit.spec.url)
            if previous is not None:
                LOGGER.info("%s - reusing journaled result", unit.label)
                unit.resolve(previous, UnitState.SUCCEEDED)
                self._completed += 1
            else:
                pending.append(unit)

        if pending:
            fetcher = self._fetcher or Fetcher(
                cache_dir=self.options.cache_dir,
                per_origin=self.options.fetch_per_origin,
                user_agent=self.options.user_agent,
            )
            try:
                await self._run_window(pending, fetcher)
            finally:
                if self._fetcher is None:
                    await fetcher.aclose()

        return [unit.result for unit in units if unit.result is not None]

    async def _run_window(self, pending: Deque[CrawlUnit], fetcher: Fetcher) -> None:
        limit = max(1, self.options.concurrency)
        running: Dict[asyncio.Task, CrawlUnit] = {}
        started = self._completed
        while pending or running:
            while pending and len(running) < limit:
                unit = pending.popleft()
                unit.start()
                started += 1
                LOGGER.info("%d/%d - %s - crawling", started, self._total, unit.label)
                running[asyncio.create_task(self._run_unit(unit, fetcher))] = unit
            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                self._complete(running.pop(task), task)

    def _complete(self, unit: CrawlUnit, task: asyncio.Task) -> None:
        exc = task.exception()
        if exc is not None:
            LOGGER.error("%s - unit crashed in scheduler: %s", unit.label, exc)
            unit.resolve(CrawlResult.failed(unit.spec, f"{type(exc).__name__}: {exc}"), UnitState.FAILED)
        elif unit.result is None:
            unit.resolve(CrawlResult.failed(unit.spec, "Unit completed without a result"), UnitState.FAILED)

        result = unit.result
        if result.error and self.options.fallback is not None:
            previous = self.options.fallback.find(unit.spec.url)
            if previous is not None:
                LOGGER.info("%s - using fallback result", unit.label)
                result = unit.result = previous.with_error(result.error)

        self._completed += 1
        if result.error:
            LOGGER.warning("%d/%d - %s - failed: %s", self._completed, self._total, unit.label, result.error)
        else:
            LOGGER.info("%d/%d - %s - done", self._completed, self._total, unit.label)
        self._journal(result)
        if self._on_result is not None:
            self._on_result(result)

    def _journal(self, result: CrawlResult) -> None:
        if not self.options.journal:
            return
        path = Path(self.options.journal)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(result.to_dict(), ensure_ascii=False) + "\n")

    async def _run_unit(self, unit: CrawlUnit, fetcher: Fetcher) -> None:
        process = await asyncio.create_subprocess_exec(
            *self.options.worker_command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
            start_new_session=True,
        )
        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stderr_task = asyncio.create_task(self._drain_stderr(process, unit, stderr_tail))
        try:
            await asyncio.wait_for(self._converse(process, unit, fetcher), self.options.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("%s - timed out after %gs, terminating unit", unit.label, self.options.timeout)
            unit.resolve(
                CrawlResult.failed(unit.spec, f"Crawl timed out after {self.options.timeout:g}s"),
                UnitState.TIMED_OUT,
            )
        finally:
            # Also kills helpers the worker started, such as a headless browser
            _kill(process)
            await process.wait()
            try:
                await asyncio.wait_for(stderr_task, STDERR_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                LOGGER.debug("%s - stderr still open after the unit was killed", unit.label)

        if unit.result is None:
            diagnostic = "\n".join(stderr_tail)
            message = f"Crawl unit exited with code {process.returncode} without reporting a result"
            if diagnostic:
                message = f"{message}:\n{diagnostic}"
            unit.resolve(CrawlResult.failed(unit.spec, message), UnitState.FAILED)

    async def _converse(self, process: asyncio.subprocess.Process, unit: CrawlUnit, fetcher: Fetcher) -> None:
        try:
            process.stdin.write(encode(crawl_request(unit.spec, self.options.worker_options())))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            LOGGER.debug("%s - unit exited before receiving its crawl request: %s", unit.label, exc)

        fetches: set[asyncio.Task] = set()
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                try:
                    message = decode(line)
                except ProtocolError as exc:
                    LOGGER.warning("%s - %s", unit.label, exc)
                    continue
                kind = message["type"]
                if kind == FETCH:
                    task = asyncio.create_task(self._proxy_fetch(process, unit, message, fetcher))
                    fetches.add(task)
                    task.add_done_callback(fetches.discard)
                elif kind == RESULT:
                    result = CrawlResult.from_dict(message.get("result") or {})
                    state = UnitState.FAILED if result.error else UnitState.SUCCEEDED
                    unit.resolve(result, state)
                elif kind == ERROR:
                    unit.resolve(CrawlResult.failed(unit.spec, message.get("error") or "Unknown error"), UnitState.FAILED)
                else:
                    LOGGER.warning("%s - ignoring %s message", unit.label, kind)
        finally:
            for task in fetches:
                task.cancel()
        await process.wait()

    async def _proxy_fetch(
        self,
        process: asyncio.subprocess.Process,
        unit: CrawlUnit,
        message: dict,
        fetcher: Fetcher,
    ) -> None:
        req_id = message.get("reqId")
        url = message.get("url") or ""
        try:
            reply = fetch_reply(req_id, response=await fetcher.fetch(url, headers=message.get("headers") or None))
        except FetchError as exc:
            LOGGER.debug("%s - %s", unit.label, exc)
            reply = fetch_reply(req_id, error=str(exc))
        except Exception as exc:
            # The unit still gets a reply so it can fail fast instead of timing out
            LOGGER.warning("%s - fetch of %s raised %s", unit.label, url, exc, exc_info=True)
            reply = fetch_reply(req_id, error=f"{type(exc).__name__}: {exc}")
        try:
            process.stdin.write(encode(reply))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            LOGGER.debug("%s - unit went away before fetch reply for %s: %s", unit.label, url, exc)

    @staticmethod
    async def _drain_stderr(process: asyncio.subprocess.Process, unit: CrawlUnit, tail: Deque[str]) -> None:
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            tail.append(text)
            LOGGER.debug("[%s] %s", unit.label, text)


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the unit's whole process group.

    Units run in their own session, so the group id is the worker pid.
    """
    if not hasattr(os, "killpg"):
        if process.returncode is None:
            process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        LOGGER.debug("Process group %d already gone", process.pid)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


async def crawl_specs_async(
    specs: Sequence[SpecEntry],
    options: Optional[CrawlOptions] = None,
    *,
    registry: Sequence[SpecDescriptor] = (),
    fetcher: Optional[Fetcher] = None,
    on_result: Optional[Callable[[CrawlResult], None]] = None,
) -> CrawlIndex:
    """Crawl specs given as descriptors, URLs or shortnames.

    Returns:
        CrawlIndex holding one result per crawled spec.

    Raises:
        SpecListError: If an entry cannot be turned into a spec.
    """
    options = options or CrawlOptions.from_env()
    descriptors = prepare_spec_list(specs, registry)
    if options.published_version:
        skipped = [spec for spec in descriptors if not spec.release_url]
        for spec in skipped:
            LOGGER.info("%s - no published version, skipped", spec.shortname or spec.url)
        descriptors = [spec for spec in descriptors if spec.release_url]

    crawler = SpecCrawler(options, fetcher=fetcher, on_result=on_result)
    results = await crawler.crawl(descriptors)
    index = CrawlIndex(results=results, options=options.to_dict())
    LOGGER.info("Crawl complete: %d specs, %d errors", index.stats["crawled"], index.stats["errors"])
    return index


def crawl_specs(
    specs: Sequence[SpecEntry],
    options: Optional[CrawlOptions] = None,
    *,
    registry: Sequence[SpecDescriptor] = (),
) -> CrawlIndex:
    """Synchronous wrapper for crawl_specs_async."""
    return asyncio.run(crawl_specs_async(specs, options, registry=registry))
