"""Hybrid CPU/HD fan zone controller for Supermicro boards
========================================================

Controls two fan zones from one loop:

- Zone 0 (FAN1..5, CPU and case fans) follows the CPU temperature through a
  three-level state machine with hysteresis. CPU temps can go from cool to
  hot in two seconds, so the loop runs every second.
- Zone 1 (FANA, drive fans) follows the average drive temperature through a
  PID loop, polled every 90 seconds since drives heat up slowly.

The zones help each other: a hot CPU pulls the drive fans to 100%, and a
drive zone near 100% pulls the CPU fans to HIGH. Every commanded state is
read back from the fan headers; fans stuck at the wrong speed, or a BMC that
stops answering, end in a BMC cold reset.

Usage:
    hybrid-fan-control --config /usr/local/etc/hybrid-fan-control.conf
    hybrid-fan-control --dry-run --verbose
"""

import argparse
import configparser
import logging
import os
import signal
import sys
import time
from typing import Optional

import numpy as np

from .config import DEFAULT_CONFIG_PATH, ControllerConfig, load_config
from .cpu_fan import cpu_level_duty, decide_cpu_fan_level
from .ipmi import DummyIPMI, IPMIInterface
from .model import (
    ControllerState,
    FanMode,
    FanZone,
    StorageCycleRecord,
    VerificationResult,
)
from .overrides import OverrideCoordinator
from .pid import StoragePIDController
from .pid_log import PIDLogWriter
from .sensors import HostSensors, summarize_temperatures
from .verification import FanVerifier

logger = logging.getLogger(__name__)


class HybridFanController:
    """Main controller class that orchestrates both fan zones"""

    def __init__(
        self,
        config: ControllerConfig,
        ipmi,
        sensors,
        pid_log: Optional[PIDLogWriter] = None,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        """Initialize the controller

        Args:
            config: Validated configuration
            ipmi: Actuator gateway (IPMIInterface or DummyIPMI)
            sensors: Sensor gateway (HostSensors or a test double)
            pid_log: Writer for the PID table
            clock: Monotonic clock [s]
            sleep: Sleep function
        """
        self.config = config
        self.ipmi = ipmi
        self.sensors = sensors
        self.pid_log = pid_log or PIDLogWriter(config)
        self.clock = clock
        self.sleep = sleep

        self.state = ControllerState(storage_duty=float(config.hd_duty_start))
        self.pid = StoragePIDController(config)
        self.overrides = OverrideCoordinator(config, ipmi)
        self.verifier = FanVerifier(config, ipmi)

        self.running = True
        self.logger = logging.getLogger(self.__class__.__name__)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        self.logger.info("Received signal %s, initiating graceful shutdown...", signum)
        self.running = False

    def start(self):
        """Take manual control of the fans and prime the PID loop"""
        # FULL mode gives us unfettered control of the zone duties
        if not self.ipmi.set_fan_mode(FanMode.FULL):
            self.logger.error("Failed to set IPMI to FULL mode")

        devices = self.sensors.enumerate_storage_devices()
        self.state.storage_devices = list(devices)
        self.pid_log.write_header(devices)

        # Seed the derivative with the current average so the first PID step
        # doesn't see the whole distance from the target as a rate of change
        sample = summarize_temperatures(None, self.sensors.read_storage_temperatures(devices))
        if sample.storage_valid:
            self.state.previous_error = sample.hd_avg - self.config.hd_target_temp

    def update_cpu_zone(self, cpu_temp, now: float):
        """Run the CPU state machine and command the zone if the level changed"""
        state = self.state
        old_level = state.cpu_fan_level
        new_level = decide_cpu_fan_level(cpu_temp, old_level, state.cpu_override_active, self.config)

        if new_level is not old_level:
            self.logger.info("CPU Fan changing... (%s)", new_level.value)
            self.ipmi.set_fan_duty(self.config.zone_id(FanZone.CPU), cpu_level_duty(new_level, self.config))
            state.touch(now)
        state.cpu_fan_level = new_level

    def storage_fan_speed(self) -> Optional[float]:
        """Average realized RPM over the storage zone fan headers"""
        speeds = [self.ipmi.read_fan_speed(h) for h in self.config.hd_fan_headers]
        readable = [s for s in speeds if s is not None]
        if not readable:
            return None
        return float(np.mean(readable))

    def poll_storage(self, now: float) -> StorageCycleRecord:
        """Read the drives, step the PID loop and command the storage zone"""
        cfg = self.config
        state = self.state
        state.last_storage_poll = now

        # Refresh the device list every time to pick up hot-plugged drives
        devices = self.sensors.enumerate_storage_devices()
        state.storage_devices = list(devices)
        sample = summarize_temperatures(state.last_cpu_temp, self.sensors.read_storage_temperatures(devices))

        old_duty = state.storage_duty_command
        result = self.pid.step(state, sample.hd_max, sample.hd_avg)

        if not state.storage_override_active:
            self.ipmi.set_fan_duty(cfg.zone_id(FanZone.STORAGE), result.duty)
            if result.duty != old_duty:
                state.touch(now)

        record = StorageCycleRecord(
            device_count=len(devices),
            hd_min=sample.hd_min,
            hd_max=sample.hd_max,
            hd_avg=sample.hd_avg,
            hd_readings=sample.hd_readings,
            error=result.error,
            fan_mode=self.ipmi.get_fan_mode(),
            fan_rpm_avg=self.storage_fan_speed(),
            old_duty=old_duty,
            new_duty=result.duty,
            cpu_temp=sample.cpu_max,
            p=result.p,
            i=result.i,
            d=result.d,
            duty_float=result.duty_float,
        )
        self.pid_log.write(record, devices)
        return record

    def run_once(self) -> VerificationResult:
        """One control iteration: CPU zone, overrides, storage zone, verify"""
        now = self.clock()
        state = self.state

        cpu_temp = self.sensors.read_cpu_temperature()
        state.last_cpu_temp = cpu_temp
        self.update_cpu_zone(cpu_temp, now)
        self.overrides.update(state, cpu_temp, now)

        if state.last_storage_poll is None or now - state.last_storage_poll > self.config.hd_polling_interval:
            self.poll_storage(now)

        return self.verifier.verify(state, self.overrides.expected_storage_duty(state), now)

    def run(self):
        """Main control loop"""
        self.logger.info("Hybrid fan controller starting...")
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.start()
        self.logger.info("Entering main control loop...")

        while self.running:
            loop_start = self.clock()
            try:
                self.run_once()
            except Exception as e:
                self.logger.error("Error in control loop: %s", e, exc_info=True)

            elapsed = self.clock() - loop_start
            self.sleep(max(0.0, self.config.poll_interval - elapsed))

        self.shutdown()

    def shutdown(self):
        """Leave the fans at full speed on the way out"""
        self.logger.info("Shutting down, setting fans full")
        self.ipmi.set_fan_mode(FanMode.FULL)


def setup_logging(config: ControllerConfig, verbose: bool = False):
    """Configure logging to stdout and the controller log file

    Raises:
        OSError: the log file cannot be opened
    """
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(config.log_file),
        ],
    )


def build_dummy_ipmi(config: ControllerConfig) -> DummyIPMI:
    """DummyIPMI wired to the configured zones and fan headers"""
    return DummyIPMI(
        zone_max_rpm={
            config.zone_id(FanZone.CPU): config.cpu_max_fan_speed,
            config.zone_id(FanZone.STORAGE): config.hd_max_fan_speed,
        },
        header_zones=config.header_zones(),
    )


def parse_args(argv=None):
    """Parse command line arguments"""
    p = argparse.ArgumentParser(description="Hybrid CPU/HD fan zone controller for Supermicro boards")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to the INI configuration file")
    p.add_argument("--dry-run", action="store_true", help="Don't send IPMI commands; use DummyIPMI and log only")
    p.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return p.parse_args(argv)


def main(argv=None) -> int:
    """Entry point"""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        setup_logging(config, args.verbose)
        pid_logger = PIDLogWriter.open_file(config.pid_log_file)
    except (OSError, ValueError, configparser.Error) as e:
        print(f"hybrid-fan-control: {e}", file=sys.stderr)
        return 1

    if os.path.exists(args.config):
        logger.info("Loaded configuration from %s", args.config)
    else:
        logger.info("Config file %s not found, using defaults", args.config)

    if args.dry_run:
        ipmi = build_dummy_ipmi(config)
    else:
        ipmi = IPMIInterface(
            ipmitool_path=config.ipmitool_path,
            fan_mode_delay=config.fan_mode_delay,
            max_valid_rpm=config.max_valid_rpm,
        )
    sensors = HostSensors(
        smartctl_path=config.smartctl_path,
        ipmitool_path=config.ipmitool_path,
        cpu_temp_source=config.cpu_temp_source,
    )

    controller = HybridFanController(config, ipmi, sensors, pid_log=PIDLogWriter(config, pid_logger))
    controller.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
