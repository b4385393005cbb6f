"""
Resource Monitoring

Tracks wall-clock time and peak resident memory while a model-selection
run fits its grid of EM models.

Example usage:
    >>> with ResourceMonitor(interval=0.05) as monitor:
    ...     result = select_ebic(X, rho)
    >>> print(f"Peak memory: {monitor.stats['peak_memory_mb']:.1f}MB")
"""

import time
import threading
from typing import Dict, Optional

import psutil


def get_memory_usage() -> float:
    """Current resident memory of this process in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


class ResourceMonitor:
    """
    Background-thread monitor for elapsed time and peak memory.

    Worker processes started by a process pool are not included; only
    the calling process is sampled.

    Attributes:
        interval: Seconds between memory samples.
        peak_memory: Peak memory observed in MB.
        monitoring: Whether monitoring is active.
        stats: Result of the last stop(), or None.
    """

    def __init__(self, interval: float = 0.1):
        """
        Args:
            interval: Seconds between memory samples.
        """
        self.interval = interval
        self.peak_memory: float = 0.0
        self.monitoring: bool = False
        self.stats: Optional[Dict[str, float]] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._start_time: Optional[float] = None
        self._start_memory: float = 0.0

    def start(self) -> None:
        """
        Start monitoring.

        Raises:
            RuntimeError: If monitoring is already active.
        """
        if self.monitoring:
            raise RuntimeError("Monitoring is already active. Call stop() first.")

        self._start_memory = get_memory_usage()
        self.peak_memory = self._start_memory
        self.monitoring = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._monitor, daemon=True)
        self._thread.start()
        self._start_time = time.perf_counter()

    def stop(self) -> Dict[str, float]:
        """
        Stop monitoring.

        Returns:
            Dictionary with 'elapsed_time' (seconds), 'peak_memory_mb' and
            'start_memory_mb'.

        Raises:
            RuntimeError: If monitoring was never started.
        """
        if not self.monitoring:
            raise RuntimeError("Monitoring was never started. Call start() first.")

        end_time = time.perf_counter()
        self.monitoring = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval * 2)

        self.peak_memory = max(self.peak_memory, get_memory_usage())
        self.stats = {
            'elapsed_time': end_time - self._start_time,
            'peak_memory_mb': self.peak_memory,
            'start_memory_mb': self._start_memory
        }
        return self.stats

    def _monitor(self) -> None:
        process = psutil.Process()
        while not self._stop_event.is_set():
            try:
                mem = process.memory_info().rss / (1024 * 1024)
                self.peak_memory = max(self.peak_memory, mem)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                break
            self._stop_event.wait(self.interval)

    def __enter__(self) -> 'ResourceMonitor':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.monitoring:
            self.stop()
