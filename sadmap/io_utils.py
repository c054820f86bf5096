"""Reading the text data files of IMU, odometry and GNSS readings."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import numpy as np

from sadmap.datatypes import GNSS, IMU, GpsStatusType, Odom

logger = logging.getLogger(__name__)

EXIT_REQUESTED = threading.Event()
"""Set to stop data loops early."""


def _floats(kind: str, fields: list[str], n: int) -> list[float]:
    if len(fields) < n:
        raise ValueError(f"{kind} record needs {n} values, got {len(fields)}")
    return [float(f) for f in fields[:n]]


def _parse_imu(fields: list[str]) -> IMU:
    t, gx, gy, gz, ax, ay, az = _floats("IMU", fields, 7)
    return IMU(timestamp=t, gyro=np.array([gx, gy, gz]), acce=np.array([ax, ay, az]))


def _parse_odom(fields: list[str]) -> Odom:
    t, wl, wr = _floats("ODOM", fields, 3)
    return Odom(timestamp=t, left_pulse=wl, right_pulse=wr)


def _parse_gnss(fields: list[str]) -> GNSS:
    t, lat, lon, alt, heading = _floats("GNSS", fields, 5)
    if len(fields) < 6:
        raise ValueError("GNSS record needs a heading-valid flag")
    flag = int(fields[5])
    if flag not in (0, 1):
        raise ValueError(f"GNSS heading-valid flag must be 0 or 1, got {fields[5]!r}")
    return GNSS(
        unix_time=t,
        status=GpsStatusType.GNSS_FIXED_SOLUTION,
        lat_lon_alt=np.array([lat, lon, alt]),
        heading=heading,
        heading_valid=bool(flag),
    )


_PARSERS = {"IMU": _parse_imu, "ODOM": _parse_odom, "GNSS": _parse_gnss}


def parse_line(line: str) -> IMU | Odom | GNSS | None:
    """Parse one data line; None for blank lines, comments and unknown records."""
    text = line.strip()
    if not text or text.startswith("#"):
        return None
    kind, *fields = text.split()
    parser = _PARSERS.get(kind)
    return None if parser is None else parser(fields)


class TxtIO:
    """Walks a data text file and hands each record to the matching callback.

    Records whose type has no callback are skipped without being parsed.
    """

    def __init__(
        self,
        file_path,
        imu_proc: Callable[[IMU], object] | None = None,
        odom_proc: Callable[[Odom], object] | None = None,
        gnss_proc: Callable[[GNSS], object] | None = None,
    ):
        self.file_path = file_path
        self.imu_proc = imu_proc
        self.odom_proc = odom_proc
        self.gnss_proc = gnss_proc

    def go(self) -> int:
        """Process the file; returns the number of records handed to callbacks."""
        handlers = {"IMU": self.imu_proc, "ODOM": self.odom_proc, "GNSS": self.gnss_proc}
        count = 0
        with open(self.file_path, encoding="utf-8") as fin:
            for line in fin:
                if EXIT_REQUESTED.is_set():
                    break
                text = line.strip()
                if not text or text.startswith("#"):
                    continue
                handler = handlers.get(text.split(maxsplit=1)[0])
                if handler is None:
                    continue
                handler(parse_line(text))
                count += 1
        logger.info("done.")
        return count