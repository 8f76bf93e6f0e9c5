"""Fixed-width PID log, one row per storage polling cycle

Example (summary mode):

    PID Fan Controller Log  ---  Target HD Temperature = 36.00 deg C  ---  PID Control Gains: ...
                HD   Min  Max   Ave  Temp   Fan   Fan  Fan %   CPU    P      I      D      Fan
    2026-10-19 Qty  Temp Temp  Temp   Err  Mode   RPM Old/New Temp  Corr   Corr   Corr    Duty
    09:14:02     8   33  ^37  35.12 -0.88  Full   900  65/60   41  -4.69   0.00  -0.00   60.31%
"""

import logging
import time
from typing import Optional, Sequence

from .config import ControllerConfig
from .model import StorageCycleRecord


def _num(fmt: str, value: Optional[float], width: int) -> str:
    if value is None:
        return "--".rjust(width)
    return fmt % value


class PIDLogWriter:
    """Writes the PID table to its own non-propagating logger"""

    def __init__(self, config: ControllerConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.summary_only = config.log_temp_summary_only
        self.logger = logger or logging.getLogger("PIDLog")
        self._devices = None

    @staticmethod
    def open_file(path: str) -> logging.Logger:
        """Attach a plain-message file handler to the PIDLog logger

        Raises:
            OSError: the log file cannot be opened
        """
        logger = logging.getLogger("PIDLog")
        handler = logging.FileHandler(path)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
        return logger

    def header(self, devices: Sequence[str]) -> str:
        cfg = self.config
        lines = [
            "",
            "",
            "PID Fan Controller Log  ---  Target HD Temperature = %5.2f deg C  ---  "
            "PID Control Gains: Kp = %6.3f, Ki = %6.3f, Kd = %5.1f" % (cfg.hd_target_temp, cfg.kp, cfg.ki, cfg.kd),
        ]
        if self.summary_only:
            top = "            HD   Min"
            bottom = time.strftime("%Y-%m-%d") + " Qty  Temp "
        else:
            top = "          " + "     " * len(devices)
            bottom = time.strftime("%Y-%m-%d") + " " + "".join("%4s " % d for d in devices)
        lines.append(top + "  Max   Ave  Temp   Fan   Fan  Fan %   CPU    P      I      D      Fan")
        lines.append(bottom + "Temp  Temp   Err  Mode   RPM Old/New Temp  Corr   Corr   Corr    Duty")
        return "\n".join(lines)

    def row(self, record: StorageCycleRecord) -> str:
        parts = [time.strftime("%H:%M:%S")]
        if self.summary_only:
            # device count shows when a hot swap was detected
            parts.append("    %2i" % record.device_count)
            parts.append("   " + _num("%2i", record.hd_min, 2))
        else:
            parts.extend("%5.0f" % t for t in record.hd_readings)
        parts.append("  ^" + _num("%2i", record.hd_max, 2))
        parts.append(_num("%7.2f", record.hd_avg, 7))
        parts.append(_num("%6.2f", record.error, 6))
        parts.append("%6s" % (record.fan_mode.label if record.fan_mode else "?"))
        parts.append(_num("%6i", record.fan_rpm_avg, 6))
        parts.append("%4i/%-3i" % (record.old_duty, record.new_duty))
        parts.append(_num("%4i", record.cpu_temp, 4))
        parts.append(" %6.2f %6.2f  %6.2f  %6.2f%%" % (record.p, record.i, record.d, record.duty_float))
        return "".join(parts)

    def write_header(self, devices: Sequence[str]):
        self._devices = list(devices)
        self.logger.info(self.header(devices))

    def write(self, record: StorageCycleRecord, devices: Sequence[str]):
        """Write one row, reprinting the header when the device list changed"""
        if not self.summary_only and list(devices) != self._devices:
            self.write_header(devices)
        self.logger.info(self.row(record))
