"""Tests for the IPMI gateway."""

import subprocess
import unittest
from unittest import mock

from hybridfan.ipmi import DummyIPMI, IPMIInterface, parse_sdr_fan_speed
from hybridfan.model import FanMode

SDR_OUTPUT = """\
CPU Temp         | 41 degrees C      | ok
FAN1             | no reading        | ns
FAN2             | 1200 RPM          | ok
FAN3             | disabled          | ns
FANA             | 900 RPM           | ok
FANB             | 12000 RPM         | ok
"""


def completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


class TestParseSdr(unittest.TestCase):
    def test_reading(self):
        self.assertEqual(parse_sdr_fan_speed(SDR_OUTPUT, "FAN2"), 1200)
        self.assertEqual(parse_sdr_fan_speed(SDR_OUTPUT, "FANA"), 900)

    def test_no_reading(self):
        self.assertIsNone(parse_sdr_fan_speed(SDR_OUTPUT, "FAN1"))
        self.assertIsNone(parse_sdr_fan_speed(SDR_OUTPUT, "FAN3"))

    def test_missing_header(self):
        self.assertIsNone(parse_sdr_fan_speed(SDR_OUTPUT, "FAN6"))

    def test_header_must_match_exactly(self):
        self.assertIsNone(parse_sdr_fan_speed("FAN10            | 800 RPM | ok\n", "FAN1"))

    def test_nonsensical_speed(self):
        self.assertIsNone(parse_sdr_fan_speed(SDR_OUTPUT, "FANB"))
        self.assertEqual(parse_sdr_fan_speed(SDR_OUTPUT, "FANB", max_valid_rpm=20000), 12000)


@mock.patch("hybridfan.ipmi.time.sleep")
@mock.patch("hybridfan.ipmi.subprocess.run")
class TestIPMIInterface(unittest.TestCase):
    def setUp(self):
        self.ipmi = IPMIInterface(ipmitool_path="ipmitool", fan_mode_delay=5.0)

    def args(self, run):
        return run.call_args[0][0]

    def test_set_fan_mode(self, run, sleep):
        run.return_value = completed()
        self.assertTrue(self.ipmi.set_fan_mode(FanMode.FULL))
        self.assertEqual(self.args(run), ["ipmitool", "raw", "0x30", "0x45", "0x01", "0x01"])
        sleep.assert_called_once_with(5.0)

    def test_get_fan_mode(self, run, sleep):
        run.return_value = completed(" 01\n")
        self.assertEqual(self.ipmi.get_fan_mode(), FanMode.FULL)
        self.assertEqual(self.args(run), ["ipmitool", "raw", "0x30", "0x45", "0x00"])

    def test_get_fan_mode_garbage(self, run, sleep):
        run.return_value = completed(" 07\n")
        self.assertIsNone(self.ipmi.get_fan_mode())

    def test_set_fan_duty(self, run, sleep):
        run.return_value = completed()
        self.assertTrue(self.ipmi.set_fan_duty(1, 65))
        self.assertEqual(
            self.args(run), ["ipmitool", "raw", "0x30", "0x70", "0x66", "0x01", "0x01", "0x41"]
        )

    def test_illegal_duty_becomes_full(self, run, sleep):
        run.return_value = completed()
        for duty in (-1, 101, 250):
            with self.subTest(duty=duty):
                self.ipmi.set_fan_duty(0, duty)
                self.assertEqual(self.args(run)[-2:], ["0x00", "0x64"])

    def test_read_fan_speed(self, run, sleep):
        run.return_value = completed(SDR_OUTPUT)
        self.assertEqual(self.ipmi.read_fan_speed("FAN2"), 1200)
        self.assertEqual(self.args(run), ["ipmitool", "sdr"])

    def test_tool_failure_is_unreadable(self, run, sleep):
        run.side_effect = subprocess.TimeoutExpired(cmd="ipmitool", timeout=10)
        self.assertIsNone(self.ipmi.read_fan_speed("FAN2"))
        self.assertFalse(self.ipmi.set_fan_duty(0, 30))

    def test_nonzero_exit(self, run, sleep):
        run.return_value = completed(returncode=1)
        self.assertIsNone(self.ipmi.get_fan_mode())
        self.assertFalse(self.ipmi.reset_bmc())

    def test_reset_bmc(self, run, sleep):
        run.return_value = completed()
        self.assertTrue(self.ipmi.reset_bmc())
        self.assertEqual(self.args(run), ["ipmitool", "bmc", "reset", "cold"])


class TestDummyIPMI(unittest.TestCase):
    def test_speed_follows_duty(self):
        ipmi = DummyIPMI(zone_max_rpm={0: 1800.0, 1: 1500.0})
        ipmi.set_fan_duty(0, 50)
        ipmi.set_fan_duty(1, 100)
        self.assertEqual(ipmi.read_fan_speed("FAN2"), 900)
        self.assertEqual(ipmi.read_fan_speed("FANA"), 1500)

    def test_stuck_and_unreadable(self):
        ipmi = DummyIPMI()
        ipmi.stuck[0] = 300
        ipmi.unreadable.add("FANA")
        ipmi.set_fan_duty(0, 100)
        self.assertEqual(ipmi.read_fan_speed("FAN1"), 300)
        self.assertIsNone(ipmi.read_fan_speed("FANA"))

    def test_reset_drops_to_standard(self):
        ipmi = DummyIPMI()
        ipmi.set_fan_mode(FanMode.FULL)
        ipmi.reset_bmc()
        self.assertEqual(ipmi.get_fan_mode(), FanMode.STANDARD)
        self.assertEqual(ipmi.resets, 1)


if __name__ == "__main__":
    unittest.main()
