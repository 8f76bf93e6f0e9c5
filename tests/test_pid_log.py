"""Tests for the PID log table."""

import logging
import unittest

from hybridfan.model import FanMode, StorageCycleRecord
from hybridfan.pid_log import PIDLogWriter

from tests.helpers import make_config


def make_record(**overrides):
    values = dict(
        device_count=2,
        hd_min=33.0,
        hd_max=37.0,
        hd_avg=35.0,
        hd_readings=(33.0, 37.0),
        error=-1.0,
        fan_mode=FanMode.FULL,
        fan_rpm_avg=900.0,
        old_duty=65,
        new_duty=60,
        cpu_temp=41.0,
        p=-5.33,
        i=0.0,
        d=0.0,
        duty_float=59.67,
    )
    values.update(overrides)
    return StorageCycleRecord(**values)


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


class TestPIDLogWriter(unittest.TestCase):
    def setUp(self):
        self.logger = logging.getLogger("test.PIDLog")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.handler = ListHandler()
        self.logger.addHandler(self.handler)

    def tearDown(self):
        self.logger.removeHandler(self.handler)

    def test_header_names_target_and_gains(self):
        writer = PIDLogWriter(make_config(), self.logger)
        header = writer.header(["ada0", "ada1"])
        self.assertIn("Target HD Temperature = 36.00 deg C", header)
        self.assertIn("Kp =  5.333, Ki =  0.000, Kd = 120.0", header)
        self.assertIn("Qty", header)

    def test_per_device_header_lists_devices(self):
        writer = PIDLogWriter(make_config(log_temp_summary_only=False), self.logger)
        header = writer.header(["ada0", "ada1"])
        self.assertIn("ada0 ada1", header)
        self.assertNotIn("Qty", header)

    def test_summary_row(self):
        row = PIDLogWriter(make_config(), self.logger).row(make_record())
        self.assertIn("^37", row)
        self.assertIn("35.00", row)
        self.assertIn("-1.00", row)
        self.assertIn("Full", row)
        self.assertIn("65/60", row)
        self.assertTrue(row.endswith("59.67%"))

    def test_per_device_row(self):
        row = PIDLogWriter(make_config(log_temp_summary_only=False), self.logger).row(make_record())
        self.assertIn("   33   37", row)

    def test_missing_values(self):
        record = make_record(hd_min=None, hd_max=None, hd_avg=None, error=None, fan_mode=None, fan_rpm_avg=None, cpu_temp=None)
        row = PIDLogWriter(make_config(), self.logger).row(record)
        self.assertIn("--", row)
        self.assertIn("?", row)

    def test_header_reprinted_when_devices_change(self):
        writer = PIDLogWriter(make_config(log_temp_summary_only=False), self.logger)
        writer.write_header(["ada0", "ada1"])
        writer.write(make_record(), ["ada0", "ada1"])
        self.assertEqual(len(self.handler.messages), 2)

        writer.write(make_record(device_count=1, hd_readings=(33.0,)), ["ada0"])
        self.assertEqual(len(self.handler.messages), 4)
        self.assertIn("PID Fan Controller Log", self.handler.messages[2])

    def test_summary_mode_never_reprints_header(self):
        writer = PIDLogWriter(make_config(), self.logger)
        writer.write_header(["ada0", "ada1"])
        writer.write(make_record(device_count=1), ["ada0"])
        self.assertEqual(len(self.handler.messages), 2)


if __name__ == "__main__":
    unittest.main()
