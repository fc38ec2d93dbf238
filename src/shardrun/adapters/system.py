"""Real system probe backed by psutil."""

from __future__ import annotations

import os
import platform
import sys

import psutil

from .base import SystemProbe


class PsutilProbe(SystemProbe):
    def memory(self) -> tuple[int, int]:
        vm = psutil.virtual_memory()
        return vm.total, vm.available

    def cpu(self) -> tuple[int, tuple[float, float, float]]:
        cores = psutil.cpu_count(logical=True) or os.cpu_count() or 1
        load = psutil.getloadavg()
        return cores, (float(load[0]), float(load[1]), float(load[2]))

    def disk(self, path: str) -> tuple[int, int, int]:
        usage = psutil.disk_usage(path)
        return usage.total, usage.used, usage.free

    def platform_info(self) -> dict[str, str]:
        return {
            "platform": sys.platform,
            "arch": platform.machine(),
            "python": platform.python_version(),
            "boot_time": f"{psutil.boot_time():.0f}",
        }
