"""IPMI actuator gateway for Supermicro X9/X10/X11 fan zones

Raw commands used:

    ipmitool raw 0x30 0x45 0x00                      # get fan mode
    ipmitool raw 0x30 0x45 0x01 <mode>               # set fan mode
    ipmitool raw 0x30 0x70 0x66 0x01 <zone> <duty>   # set zone duty cycle
    ipmitool sdr                                     # fan header RPMs
    ipmitool bmc reset cold
"""

import logging
import subprocess
import time
from typing import Dict, Optional

from .model import FanMode


def parse_sdr_fan_speed(sdr_output: str, header: str, max_valid_rpm: int = 10000) -> Optional[int]:
    """Extract the RPM of one fan header from `ipmitool sdr` output

    Lines look like ``FAN2             | 1200 RPM          | ok``.

    Returns:
        RPM, or None for 'no reading', 'disabled', a missing header or a
        nonsensical value
    """
    for line in sdr_output.splitlines():
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < 2 or parts[0] != header:
            continue

        value = parts[1].split()
        if not value:
            return None
        try:
            rpm = int(float(value[0]))
        except ValueError:
            # "no reading", "disabled"
            return None
        if rpm < 0 or rpm > max_valid_rpm:
            return None
        return rpm
    return None


class IPMIInterface:
    """Interface to IPMI for fan mode, zone duty and fan speed read-back"""

    def __init__(
        self,
        ipmitool_path: str = "ipmitool",
        fan_mode_delay: float = 5.0,
        max_valid_rpm: int = 10000,
        timeout: float = 10.0,  # IPMI tool is slow
    ):
        self.command = ipmitool_path
        self.fan_mode_delay = fan_mode_delay
        self.max_valid_rpm = max_valid_rpm
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)

    def _run(self, *args: str) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                [self.command, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.error("ipmitool %s failed: %s", " ".join(args), e)
            return None

    def set_fan_mode(self, mode: FanMode) -> bool:
        """Set IPMI fan control mode

        Sleeps afterwards to give the BMC some breathing room.
        """
        self.logger.info("Setting fan mode to %d (%s)", mode.value, mode.name)
        result = self._run("raw", "0x30", "0x45", "0x01", f"0x{mode.value:02x}")
        time.sleep(self.fan_mode_delay)
        return result is not None and result.returncode == 0

    def get_fan_mode(self) -> Optional[FanMode]:
        """Read the current IPMI fan mode, None if it cannot be read"""
        result = self._run("raw", "0x30", "0x45", "0x00")
        if result is None or result.returncode != 0:
            return None
        try:
            return FanMode(int(result.stdout.strip(), 16))
        except ValueError:
            self.logger.warning("Unexpected fan mode: %r", result.stdout)
            return None

    def set_fan_duty(self, zone_id: int, duty_percent: int) -> bool:
        """Set fan PWM duty cycle for a zone

        Args:
            zone_id: IPMI zone (0 = FAN1..5, 1 = FANA)
            duty_percent: Duty cycle 0-100, anything else is treated as 100
        """
        if not 0 <= duty_percent <= 100:
            self.logger.warning("Illegal duty cycle %s, assuming 100%%", duty_percent)
            duty_percent = 100

        self.logger.info("Setting zone %d duty cycle to %d%%", zone_id, duty_percent)
        result = self._run(
            "raw", "0x30", "0x70", "0x66", "0x01", f"0x{zone_id:02x}", f"0x{int(duty_percent):02x}"
        )
        return result is not None and result.returncode == 0

    def read_fan_speed(self, header: str) -> Optional[int]:
        """Read the realized RPM of a fan header, None if unreadable"""
        result = self._run("sdr")
        if result is None or result.returncode != 0:
            return None
        rpm = parse_sdr_fan_speed(result.stdout, header, self.max_valid_rpm)
        if rpm is None:
            self.logger.warning("%s fan speed: no reading", header)
        else:
            self.logger.debug("%s fan speed: %d RPM", header, rpm)
        return rpm

    def reset_bmc(self) -> bool:
        """Cold reset the BMC

        The BMC comes back in its last fan mode, which the caller must
        re-assert anyway.
        """
        self.logger.critical("Resetting BMC")
        result = self._run("bmc", "reset", "cold")
        return result is not None and result.returncode == 0


class DummyIPMI:
    """Mock IPMI implementation for testing and dry-run mode

    Reports each zone spinning at a speed proportional to its last
    commanded duty. Zones can be stuck at a fixed RPM and headers made
    unreadable to exercise the recovery loop.
    """

    def __init__(self, zone_max_rpm: Optional[Dict[int, float]] = None, header_zones: Optional[Dict[str, int]] = None):
        self.zone_max_rpm = zone_max_rpm or {0: 1800.0, 1: 1500.0}
        self.header_zones = header_zones or {}
        self.mode = FanMode.STANDARD
        self.duties: Dict[int, int] = {}
        self.stuck: Dict[int, int] = {}
        self.unreadable = set()
        self.resets = 0
        self.commands = []
        self.logger = logging.getLogger(self.__class__.__name__)

    def set_fan_mode(self, mode: FanMode) -> bool:
        self.mode = mode
        self.commands.append(("mode", mode))
        self.logger.info("[DummyIPMI] fan mode -> %s", mode.name)
        return True

    def get_fan_mode(self) -> Optional[FanMode]:
        return self.mode

    def set_fan_duty(self, zone_id: int, duty_percent: int) -> bool:
        self.duties[zone_id] = duty_percent
        self.commands.append(("duty", zone_id, duty_percent))
        self.logger.info("[DummyIPMI] zone %d duty -> %d%%", zone_id, duty_percent)
        return True

    def read_fan_speed(self, header: str) -> Optional[int]:
        if header in self.unreadable:
            return None
        # FAN1..FAN6 are zone 0, lettered headers (FANA, FANB) zone 1
        zone = self.header_zones.get(header, 1 if header[-1:].isalpha() else 0)
        if zone in self.stuck:
            return self.stuck[zone]
        duty = self.duties.get(zone, 100 if self.mode is FanMode.FULL else 50)
        return int(self.zone_max_rpm.get(zone, 1500.0) * duty / 100)

    def reset_bmc(self) -> bool:
        self.resets += 1
        self.commands.append(("reset",))
        self.logger.critical("[DummyIPMI] BMC reset")
        self.mode = FanMode.STANDARD
        return True
