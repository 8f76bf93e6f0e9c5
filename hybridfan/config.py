"""Controller configuration

All tunables live in one read-only ControllerConfig. Defaults are the values
tuned on an X10-SRi-F with Noctua fans and Seagate NAS drives; an INI file
can override any of them:

    [CPU]
    high_temp = 55
    med_temp = 45
    low_temp = 35

    [HD]
    target_temp = 36
    max_allowed_temp = 40

    [PID]
    kp = 5.333
    ki = 0
    kd = 120
"""

import configparser
import os
from dataclasses import dataclass
from typing import Dict, Tuple

from .model import FanZone

DEFAULT_CONFIG_PATH = "/usr/local/etc/hybrid-fan-control.conf"


@dataclass(frozen=True)
class ControllerConfig:
    """Read-only controller settings, loaded once at startup"""

    # CPU thresholds [°C]
    cpu_high_temp: float = 55.0  # go HIGH at or above
    cpu_med_temp: float = 45.0  # go MED at or above
    cpu_low_temp: float = 35.0  # go LOW at or below

    # CPU zone duty per level [%]
    cpu_duty_high: int = 100
    cpu_duty_med: int = 60
    cpu_duty_low: int = 30

    # Storage targets [°C]
    hd_target_temp: float = 36.0  # PID setpoint for the average drive temp
    hd_max_allowed_temp: float = 40.0  # any drive at this temp forces 100%

    # Storage zone duty limits [%]
    hd_duty_high: int = 100
    hd_duty_low: int = 25  # some 120mm fans stall below 30
    hd_duty_start: int = 65

    # PID gains, applied with the polling interval in minutes
    kp: float = 16 / 3
    ki: float = 0.0
    kd: float = 120.0

    # Cross-zone coupling
    hd_fans_cool_cpu: bool = True
    cpu_hd_override_temp: float = 62.0
    cpu_fans_cool_hd: bool = True
    hd_cpu_override_duty: int = 95

    # Zones and fan headers
    cpu_fan_zone: int = 0  # FAN1..5
    hd_fan_zone: int = 1  # FANA
    cpu_fan_header: str = "FAN2"
    hd_fan_header: str = "FANB"
    hd_fan_headers: Tuple[str, ...] = ("FANA", "FANB", "FANC")

    # Verification
    cpu_max_fan_speed: float = 1800.0  # RPM actually reached at 100%
    hd_max_fan_speed: float = 1500.0
    speed_margin: float = 0.8
    fan_speed_change_delay: float = 10.0  # s
    verify_steady_interval: float = 60.0  # s between checks once confirmed
    bmc_reboot_grace_time: float = 120.0  # s
    bmc_fail_threshold: int = 1  # retries before resetting the BMC
    max_valid_rpm: int = 10000

    # Timing [s]
    poll_interval: float = 1.0
    hd_polling_interval: float = 90.0
    fan_mode_delay: float = 5.0

    # Tools
    ipmitool_path: str = "/usr/local/bin/ipmitool"
    smartctl_path: str = "/usr/local/sbin/smartctl"
    cpu_temp_source: str = "sysctl"  # or 'ipmi'

    # Logging
    log_level: str = "INFO"
    log_file: str = "/var/log/hybrid_fan_control.log"
    pid_log_file: str = "/var/log/hybrid_fan_pid.log"
    log_temp_summary_only: bool = True

    @property
    def cpu_reference_speed(self) -> float:
        """RPM separating a high CPU zone from a low one"""
        return self.cpu_max_fan_speed * self.speed_margin

    @property
    def hd_reference_speed(self) -> float:
        """RPM separating a high storage zone from a low one"""
        return self.hd_max_fan_speed * self.speed_margin

    @property
    def hd_polling_minutes(self) -> float:
        """PID control period in minutes"""
        return self.hd_polling_interval / 60.0

    def zone_id(self, zone) -> int:
        """IPMI zone number for a FanZone"""
        return self.cpu_fan_zone if zone is FanZone.CPU else self.hd_fan_zone

    def header_zones(self) -> Dict[str, int]:
        """IPMI zone number for each configured fan header"""
        zones = {h: self.zone_id(FanZone.STORAGE) for h in self.hd_fan_headers}
        zones[self.hd_fan_header] = self.zone_id(FanZone.STORAGE)
        zones[self.cpu_fan_header] = self.zone_id(FanZone.CPU)
        return zones

    def validate(self) -> "ControllerConfig":
        """Check internal consistency

        Raises:
            ValueError: on any setting that would make the controller unsafe
        """
        if not self.cpu_low_temp < self.cpu_med_temp < self.cpu_high_temp:
            raise ValueError(
                f"CPU thresholds must satisfy low < med < high "
                f"({self.cpu_low_temp}/{self.cpu_med_temp}/{self.cpu_high_temp})"
            )
        for name in (
            "cpu_duty_high",
            "cpu_duty_med",
            "cpu_duty_low",
            "hd_duty_high",
            "hd_duty_low",
            "hd_duty_start",
            "hd_cpu_override_duty",
        ):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"Invalid duty cycle {name} ({value})")
        if self.hd_duty_low > self.hd_duty_high:
            raise ValueError(
                f"hd_duty_low ({self.hd_duty_low}) exceeds hd_duty_high ({self.hd_duty_high})"
            )
        if not self.hd_duty_low <= self.hd_duty_start <= self.hd_duty_high:
            raise ValueError(f"hd_duty_start ({self.hd_duty_start}) outside duty limits")
        if {self.cpu_fan_zone, self.hd_fan_zone} != {0, 1}:
            raise ValueError(
                f"Fan zones must be 0 and 1 ({self.cpu_fan_zone}, {self.hd_fan_zone})"
            )
        for name in ("poll_interval", "hd_polling_interval", "verify_steady_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive ({getattr(self, name)})")
        for name in ("fan_speed_change_delay", "bmc_reboot_grace_time", "fan_mode_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"Negative {name} ({getattr(self, name)})")
        if self.bmc_fail_threshold < 0:
            raise ValueError(f"Negative bmc_fail_threshold ({self.bmc_fail_threshold})")
        if not 0 < self.speed_margin <= 1:
            raise ValueError(f"speed_margin must be in (0, 1] ({self.speed_margin})")
        if self.cpu_temp_source not in ("sysctl", "ipmi"):
            raise ValueError(f"Unknown cpu_temp_source '{self.cpu_temp_source}'")
        if not self.hd_fan_headers:
            raise ValueError("hd_fan_headers must list at least one fan header")
        return self


# (section, key, attribute, getter)
_SCHEMA = [
    ("CPU", "high_temp", "cpu_high_temp", "getfloat"),
    ("CPU", "med_temp", "cpu_med_temp", "getfloat"),
    ("CPU", "low_temp", "cpu_low_temp", "getfloat"),
    ("CPU", "duty_high", "cpu_duty_high", "getint"),
    ("CPU", "duty_med", "cpu_duty_med", "getint"),
    ("CPU", "duty_low", "cpu_duty_low", "getint"),
    ("CPU", "max_fan_speed", "cpu_max_fan_speed", "getfloat"),
    ("CPU", "fan_zone", "cpu_fan_zone", "getint"),
    ("CPU", "fan_header", "cpu_fan_header", "get"),
    ("CPU", "temp_source", "cpu_temp_source", "get"),
    ("CPU", "hd_override_temp", "cpu_hd_override_temp", "getfloat"),
    ("CPU", "fans_cool_hd", "cpu_fans_cool_hd", "getboolean"),
    ("HD", "target_temp", "hd_target_temp", "getfloat"),
    ("HD", "max_allowed_temp", "hd_max_allowed_temp", "getfloat"),
    ("HD", "duty_high", "hd_duty_high", "getint"),
    ("HD", "duty_low", "hd_duty_low", "getint"),
    ("HD", "duty_start", "hd_duty_start", "getint"),
    ("HD", "max_fan_speed", "hd_max_fan_speed", "getfloat"),
    ("HD", "fan_zone", "hd_fan_zone", "getint"),
    ("HD", "fan_header", "hd_fan_header", "get"),
    ("HD", "fan_headers", "hd_fan_headers", "getlist"),
    ("HD", "fans_cool_cpu", "hd_fans_cool_cpu", "getboolean"),
    ("HD", "cpu_override_duty", "hd_cpu_override_duty", "getint"),
    ("HD", "polling_interval", "hd_polling_interval", "getfloat"),
    ("PID", "kp", "kp", "getfloat"),
    ("PID", "ki", "ki", "getfloat"),
    ("PID", "kd", "kd", "getfloat"),
    ("Verify", "speed_margin", "speed_margin", "getfloat"),
    ("Verify", "change_delay", "fan_speed_change_delay", "getfloat"),
    ("Verify", "steady_interval", "verify_steady_interval", "getfloat"),
    ("Verify", "bmc_reboot_grace", "bmc_reboot_grace_time", "getfloat"),
    ("Verify", "bmc_fail_threshold", "bmc_fail_threshold", "getint"),
    ("Verify", "max_valid_rpm", "max_valid_rpm", "getint"),
    ("Ipmi", "ipmitool_path", "ipmitool_path", "get"),
    ("Ipmi", "fan_mode_delay", "fan_mode_delay", "getfloat"),
    ("Paths", "smartctl_path", "smartctl_path", "get"),
    ("Log", "level", "log_level", "get"),
    ("Log", "file", "log_file", "get"),
    ("Log", "pid_log_file", "pid_log_file", "get"),
    ("Log", "temp_summary_only", "log_temp_summary_only", "getboolean"),
    ("Loop", "poll_interval", "poll_interval", "getfloat"),
]


def config_from_parser(parser: configparser.ConfigParser) -> ControllerConfig:
    """Build a ControllerConfig from parsed INI content

    Keys that are absent keep their defaults.

    Raises:
        ValueError: a value cannot be converted or fails validation
    """
    values = {}
    for section, key, attr, getter in _SCHEMA:
        if not parser.has_option(section, key):
            continue
        if getter == "getlist":
            raw = parser.get(section, key)
            values[attr] = tuple(h.strip() for h in raw.split(",") if h.strip())
        else:
            values[attr] = getattr(parser, getter)(section, key)
    return ControllerConfig(**values).validate()


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> ControllerConfig:
    """Load configuration from an INI file

    A missing file is not an error: the built-in defaults are used.

    Args:
        config_path: Path to configuration file

    Returns:
        Validated ControllerConfig
    """
    if not os.path.exists(config_path):
        return ControllerConfig().validate()

    parser = configparser.ConfigParser()
    with open(config_path, encoding="utf-8") as f:
        parser.read_file(f)
    return config_from_parser(parser)
