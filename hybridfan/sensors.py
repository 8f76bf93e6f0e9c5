"""Sensor gateway: CPU core temperatures and drive temperatures

Reading failures never raise. An unreadable CPU temperature comes back as
None and an unreadable drive is simply left out of the readings, so the
controllers can bias toward maximum cooling.
"""

import logging
import platform
import re
import subprocess
from typing import List, Optional, Sequence

import numpy as np

from .model import TemperatureSample, is_valid_temperature

SYSCTL_CORE_TEMP = re.compile(r"^dev\.cpu\.\d+\.temperature:\s*([-\d.]+)C?\s*$")
IPMI_SENSOR_READING = re.compile(r"Sensor Reading\s*:\s*([-\d.]+)")
CAMCONTROL_DEVICES = re.compile(r"\(([^)]*)\)")
ATA_DISK = re.compile(r"^a?da\d+$")


def parse_sysctl_core_temps(output: str) -> List[float]:
    """Parse `sysctl -a dev.cpu` output into per-core temperatures"""
    temps = []
    for line in output.splitlines():
        m = SYSCTL_CORE_TEMP.match(line.strip())
        if m:
            try:
                temps.append(float(m.group(1)))
            except ValueError:
                continue
    return temps


def parse_camcontrol_devlist(output: str) -> List[str]:
    """Pick the ada/da disk names out of `camcontrol devlist`, skipping SSDs

    A line looks like:
        <ST4000VN000-1H4168 SC46>  at scbus0 target 0 lun 0 (ada0,pass0)
    """
    disks = []
    for line in output.splitlines():
        if "SSD" in line:
            continue
        m = CAMCONTROL_DEVICES.search(line)
        if not m:
            continue
        for name in m.group(1).split(","):
            name = name.strip()
            if ATA_DISK.match(name):
                disks.append(name)
    return disks


def parse_lsblk_rotational(output: str) -> List[str]:
    """Pick rotational disks out of `lsblk -nido KNAME,ROTA`"""
    disks = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "1":
            disks.append(parts[0])
    return disks


def parse_smartctl_temperature(output: str) -> Optional[float]:
    """Raw value of the Temperature_Celsius attribute in `smartctl -A` output

    The raw value is the 10th column:
        194 Temperature_Celsius 0x0022 036 040 000 Old_age Always - 36 (0 17 0 0 0)
    """
    for line in output.splitlines():
        if "Temperature_Celsius" not in line:
            continue
        fields = line.split()
        if len(fields) < 10:
            return None
        try:
            temp = float(fields[9])
        except ValueError:
            return None
        return temp if is_valid_temperature(temp) else None
    return None


def summarize_temperatures(cpu_temp: Optional[float], readings: Sequence[float]) -> TemperatureSample:
    """Build a TemperatureSample from a CPU reading and drive readings

    With no drive readings the storage aggregates are None (invalid).
    """
    values = np.asarray([float(r) for r in readings], dtype=float)
    if values.size == 0:
        return TemperatureSample(cpu_max=cpu_temp, hd_min=None, hd_max=None, hd_avg=None)

    return TemperatureSample(
        cpu_max=cpu_temp,
        hd_min=float(np.min(values)),
        hd_max=float(np.max(values)),
        hd_avg=float(np.mean(values)),
        hd_readings=tuple(float(v) for v in values),
    )


class HostSensors:
    """Reads CPU temperature from the kernel (or IPMI) and drive
    temperatures from SMART data"""

    def __init__(
        self,
        smartctl_path: str = "smartctl",
        ipmitool_path: str = "ipmitool",
        cpu_temp_source: str = "sysctl",
        timeout: float = 10.0,
    ):
        self.smartctl_path = smartctl_path
        self.ipmitool_path = ipmitool_path
        self.cpu_temp_source = cpu_temp_source
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)

    def _output(self, args: List[str]) -> Optional[str]:
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.error("%s failed: %s", args[0], e)
            return None
        # smartctl uses non-zero exit bits for SMART warnings, keep its output
        return result.stdout

    def read_cpu_temperature(self) -> Optional[float]:
        """Maximum CPU core temperature in °C, None if unreadable"""
        if self.cpu_temp_source == "ipmi":
            temp = self._read_cpu_temp_ipmi()
        else:
            temp = self._read_cpu_temp_sysctl()

        if not is_valid_temperature(temp):
            self.logger.warning("CPU temperature unreadable (%r)", temp)
            return None
        self.logger.debug("CPU Temp: %.1f", temp)
        return temp

    def _read_cpu_temp_sysctl(self) -> Optional[float]:
        # Max core temperature from the kernel; faster than IPMI and still
        # works while the BMC is rebooting
        output = self._output(["sysctl", "-a", "dev.cpu"])
        if output is None:
            return None
        temps = parse_sysctl_core_temps(output)
        return max(temps) if temps else None

    def _read_cpu_temp_ipmi(self) -> Optional[float]:
        output = self._output([self.ipmitool_path, "sensor", "get", "CPU Temp"])
        if output is None:
            return None
        m = IPMI_SENSOR_READING.search(output)
        if not m:
            return None
        try:
            return float(m.group(1))
        except ValueError:
            return None

    def enumerate_storage_devices(self) -> List[str]:
        """Spinning disks currently attached, re-queried to pick up hot-plugs"""
        if platform.system() == "FreeBSD":
            output = self._output(["camcontrol", "devlist"])
            disks = parse_camcontrol_devlist(output or "")
        else:
            output = self._output(["lsblk", "-nido", "KNAME,ROTA"])
            disks = parse_lsblk_rotational(output or "")
        self.logger.debug("Storage devices: %s", disks)
        return disks

    def read_storage_temperatures(self, devices: Sequence[str]) -> List[float]:
        """SMART temperatures for the given devices, unreadable drives skipped"""
        temps = []
        for device in devices:
            output = self._output([self.smartctl_path, "-A", f"/dev/{device}"])
            temp = parse_smartctl_temperature(output or "")
            if temp is None:
                self.logger.warning("/dev/%s: temperature unreadable", device)
                continue
            self.logger.debug("/dev/%s: %.0f", device, temp)
            temps.append(temp)
        return temps
