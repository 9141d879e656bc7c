# util/timing.py
import time
from contextlib import contextmanager
from typing import Any, Iterator
import logging


class Stopwatch:
    """Elapsed wall time in ms since construction; frozen once stop() is called."""

    def __init__(self) -> None:
        self._t0 = time.perf_counter()
        self._t1: float | None = None

    def stop(self) -> int:
        if self._t1 is None:
            self._t1 = time.perf_counter()
        return self.ms

    @property
    def ms(self) -> int:
        end = self._t1 if self._t1 is not None else time.perf_counter()
        return int((end - self._t0) * 1000)


@contextmanager
def timed(logger: logging.Logger, name: str, **kv: Any) -> Iterator[Stopwatch]:
    """
    Usage:
      with timed(logger, "oracle.call", model="qwen3:8b") as sw:
          ...
      sw.ms  # duration, also available after the block
    Emits one INFO on exit: "<name>.done ms=<int> key=val ..."
    """
    sw = Stopwatch()
    try:
        yield sw
    finally:
        dt_ms = sw.stop()
        suffix = "".join(f" {k}={v}" for k, v in kv.items())
        logger.info("%s.done ms=%d%s", name, dt_ms, suffix)


def epoch_seconds() -> int:
    return int(time.time())
