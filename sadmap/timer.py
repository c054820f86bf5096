"""Wall-clock timing of named functions."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from statistics import fmean
from typing import Any

logger = logging.getLogger(__name__)


class Timer:
    """Records how long named functions take, in milliseconds."""

    def __init__(self):
        self.records: dict[str, list[float]] = {}

    def evaluate(self, func: Callable[[], Any], func_name: str) -> Any:
        """Call func, record its duration under func_name and return its result."""
        t1 = time.perf_counter()
        result = func()
        elapsed_ms = (time.perf_counter() - t1) * 1000.0
        self.records.setdefault(func_name, []).append(elapsed_ms)
        return result

    def print_all(self) -> None:
        logger.info(">>> ===== Printing run time =====")
        for name, usage in sorted(self.records.items()):
            logger.info("> [ %s ] average time usage: %s ms , called times: %d", name, fmean(usage), len(usage))
        logger.info(">>> ===== Printing run time end =====")

    def dump_into_file(self, file_name) -> None:
        """Write the records as columns, one column per function name."""
        names = sorted(self.records)
        max_length = max((len(self.records[n]) for n in names), default=0)
        with open(file_name, "w", encoding="utf-8") as ofs:
            logger.info("Dump Time Records into file: %s", file_name)
            ofs.write("".join(f"{name}, " for name in names) + "\n")
            for i in range(max_length):
                cells = (
                    f"{self.records[name][i]:g}," if i < len(self.records[name]) else ","
                    for name in names
                )
                ofs.write("".join(cells) + "\n")

    def mean_time(self, func_name: str) -> float:
        """Average duration of func_name in ms, or 0.0 if it was never timed."""
        usage = self.records.get(func_name)
        return fmean(usage) if usage else 0.0

    def clear(self) -> None:
        self.records.clear()


def evaluate_and_call(func: Callable[[], Any], func_name: str = "", times: int = 10) -> float:
    """Call func the given number of times and return the average duration in ms."""
    total = 0.0
    for _ in range(times):
        t1 = time.perf_counter()
        func()
        total += (time.perf_counter() - t1) * 1000.0
    average = total / times
    logger.info("method %s average time/calls: %s/%d ms.", func_name, average, times)
    return average