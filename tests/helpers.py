"""Test doubles shared by the test modules."""

from hybridfan.config import ControllerConfig
from hybridfan.controller import build_dummy_ipmi
from hybridfan.ipmi import DummyIPMI


def make_config(**overrides) -> ControllerConfig:
    """Default configuration with no IPMI delays"""
    values = {"fan_mode_delay": 0.0}
    values.update(overrides)
    return ControllerConfig(**values).validate()


def make_ipmi(config: ControllerConfig) -> DummyIPMI:
    return build_dummy_ipmi(config)


class FakeSensors:
    """Sensor gateway returning scripted readings"""

    def __init__(self, cpu_temp=40.0, hd_temps=(36.0, 36.0), devices=("ada0", "ada1")):
        self.cpu_temp = cpu_temp
        self.hd_temps = list(hd_temps)
        self.devices = list(devices)
        self.storage_reads = 0

    def read_cpu_temperature(self):
        return self.cpu_temp

    def enumerate_storage_devices(self):
        return list(self.devices)

    def read_storage_temperatures(self, devices):
        self.storage_reads += 1
        return list(self.hd_temps)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
