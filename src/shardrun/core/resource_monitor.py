"""Resource Monitor: samples memory/CPU/disk, keeps a rolling history and
publishes warning and emergency signals to explicit subscribers."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable

from shardrun.adapters.base import SystemProbe
from shardrun.config import Settings
from shardrun.models.enums import ResourceKind, ResourceSignal
from shardrun.models.resources import (
    CpuUsage,
    DiskUsage,
    EmergencyEvent,
    MemoryUsage,
    ResourceAverages,
    ResourceSnapshot,
    ResourceSummary,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


def format_bytes(num: float) -> str:
    if num <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(num)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


class ResourceMonitor:
    """
    Owned by the Orchestrator and passed in at construction; no process-wide
    state. Sampling is synchronous (``check_resources``); the periodic loop is
    an asyncio task started and stopped explicitly.
    """

    def __init__(self, settings: Settings, probe: SystemProbe):
        self.settings = settings
        self.probe = probe
        self.memory_limit_percent = settings.memory_limit_percent
        self.cpu_threshold = settings.cpu_threshold
        self.disk_buffer = settings.disk_buffer
        self.memory_emergency_percent = settings.memory_emergency_percent
        self.cpu_emergency_percent = settings.cpu_emergency_percent
        self.disk_path = settings.disk_path

        self.history: deque[ResourceSnapshot] = deque(maxlen=settings.history_size)
        self._listeners: dict[ResourceSignal, list[Listener]] = {s: [] for s in ResourceSignal}
        self._task: asyncio.Task | None = None

    # ── Publish / Subscribe ─────────────────────────────────────

    def subscribe(self, signal: ResourceSignal, callback: Listener) -> None:
        self._listeners[ResourceSignal(signal)].append(callback)

    def unsubscribe(self, signal: ResourceSignal, callback: Listener) -> None:
        listeners = self._listeners[ResourceSignal(signal)]
        if callback in listeners:
            listeners.remove(callback)

    def _emit(self, signal: ResourceSignal, payload: Any) -> None:
        for callback in list(self._listeners[signal]):
            try:
                callback(payload)
            except Exception:
                logger.exception("Error in %s listener", signal.value)

    # ── Sampling ────────────────────────────────────────────────

    def check_memory_usage(self) -> MemoryUsage:
        total, available = self.probe.memory()
        used = total - available
        limit = int(total * self.memory_limit_percent / 100)
        return MemoryUsage(
            total=total,
            used=used,
            free=available,
            percentage=(used / total) * 100 if total else 0.0,
            limit=limit,
            limit_percent=self.memory_limit_percent,
            safe=used < limit,
        )

    def check_cpu_usage(self) -> CpuUsage:
        cores, load = self.probe.cpu()
        cores = max(cores, 1)
        usage = (load[0] / cores) * 100
        return CpuUsage(
            cores=cores,
            load_average=load,
            current_load=load[0],
            percentage=min(usage, 100.0),
            safe=usage < self.cpu_threshold,
        )

    def check_disk_space(self) -> DiskUsage:
        try:
            total, used, free = self.probe.disk(self.disk_path)
        except OSError as e:
            # Unknown disk state counts as safe
            logger.warning("Could not check disk space at %s: %s", self.disk_path, e)
            return DiskUsage(
                path=self.disk_path,
                total=0,
                used=0,
                available=self.disk_buffer + 1,
                safe=True,
                error=str(e),
            )
        return DiskUsage(
            path=self.disk_path,
            total=total,
            used=used,
            available=free,
            safe=free > self.disk_buffer,
        )

    def sample(self) -> ResourceSnapshot:
        """Take a snapshot without recording it or emitting signals."""
        memory = self.check_memory_usage()
        cpu = self.check_cpu_usage()
        disk = self.check_disk_space()
        return ResourceSnapshot(
            timestamp=datetime.now(timezone.utc),
            memory=memory,
            cpu=cpu,
            disk=disk,
            safe=memory.safe and cpu.safe and disk.safe,
        )

    def check_resources(self) -> ResourceSnapshot:
        """Sample, append to history and evaluate warning/emergency conditions."""
        snapshot = self.sample()
        self._record(snapshot)
        return snapshot

    def _record(self, snapshot: ResourceSnapshot) -> None:
        self.history.append(snapshot)
        self._check_for_warnings(snapshot)

    def _check_for_warnings(self, snapshot: ResourceSnapshot) -> None:
        memory, cpu, disk = snapshot.memory, snapshot.cpu, snapshot.disk

        if not memory.safe:
            self._emit(ResourceSignal.MEMORY_WARNING, memory)
            if memory.percentage > self.memory_emergency_percent:
                self._emit(
                    ResourceSignal.EMERGENCY,
                    EmergencyEvent(type=ResourceKind.MEMORY, data=memory),
                )

        if not cpu.safe:
            self._emit(ResourceSignal.CPU_WARNING, cpu)
            if cpu.percentage > self.cpu_emergency_percent:
                self._emit(
                    ResourceSignal.EMERGENCY,
                    EmergencyEvent(type=ResourceKind.CPU, data=cpu),
                )

        if not disk.safe:
            self._emit(ResourceSignal.DISK_WARNING, disk)
            if disk.available < self.disk_buffer / 2:
                self._emit(
                    ResourceSignal.EMERGENCY,
                    EmergencyEvent(type=ResourceKind.DISK, data=disk),
                )

    # ── Worker Budget ───────────────────────────────────────────

    def calculate_optimal_workers(self, memory_per_worker: int | None = None) -> int:
        """min(cpu bound, memory bound, hard cap), never below 1."""
        per_worker = memory_per_worker or self.settings.memory_per_worker
        memory = self.check_memory_usage()
        cpu = self.check_cpu_usage()

        cpu_workers = max(2, cpu.cores - 1)
        memory_workers = memory.free // per_worker
        optimal = min(cpu_workers, memory_workers, self.settings.max_workers_cap)
        return max(1, int(optimal))

    # ── Periodic Monitoring ─────────────────────────────────────

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self, interval: float | None = None) -> None:
        """Start the periodic sampling task on the running event loop."""
        if self.is_monitoring:
            return
        interval = interval if interval is not None else self.settings.monitor_interval
        self._task = asyncio.get_running_loop().create_task(
            self._monitor_loop(interval), name="resource-monitor",
        )
        logger.info(
            "Resource monitoring started (interval %.1fs, memory limit %s%%, disk buffer %s)",
            interval, self.memory_limit_percent, format_bytes(self.disk_buffer),
        )

    async def stop_monitoring(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Resource monitoring stopped")

    @asynccontextmanager
    async def running(self, interval: float | None = None):
        self.start_monitoring(interval)
        try:
            yield self
        finally:
            await self.stop_monitoring()

    async def _monitor_loop(self, interval: float) -> None:
        while True:
            try:
                # Probe off-loop, record and emit on the loop
                snapshot = await asyncio.to_thread(self.sample)
                self._record(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Resource monitor tick failed")
            await asyncio.sleep(interval)

    # ── Reporting ───────────────────────────────────────────────

    def get_resource_summary(self) -> ResourceSummary | None:
        if not self.history:
            return None
        latest = self.history[-1]
        count = len(self.history)
        return ResourceSummary(
            current=latest,
            averages=ResourceAverages(
                memory=sum(s.memory.percentage for s in self.history) / count,
                cpu=sum(s.cpu.percentage for s in self.history) / count,
            ),
            peak_memory=max(s.memory.percentage for s in self.history),
            samples=count,
            optimal_workers=self.calculate_optimal_workers(),
            safe=latest.safe,
        )

    def system_info(self) -> dict[str, Any]:
        total, _ = self.probe.memory()
        cores, _ = self.probe.cpu()
        info = {
            "cpus": cores,
            "total_memory": format_bytes(total),
            "memory_limit": format_bytes(total * self.memory_limit_percent / 100),
            "disk_buffer": format_bytes(self.disk_buffer),
            "pid": os.getpid(),
        }
        info.update(self.probe.platform_info())
        return info
