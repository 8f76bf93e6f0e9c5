"""Tests for the sensor gateway parsers and aggregation."""

import unittest
from unittest import mock

from hybridfan.sensors import (
    HostSensors,
    parse_camcontrol_devlist,
    parse_lsblk_rotational,
    parse_smartctl_temperature,
    parse_sysctl_core_temps,
    summarize_temperatures,
)

SYSCTL = """\
dev.cpu.3.temperature: 44.0C
dev.cpu.3.coretemp.throttle_log: 0
dev.cpu.2.temperature: 47.0C
dev.cpu.1.temperature: 41.0C
dev.cpu.0.temperature: 42.0C
"""

CAMCONTROL = """\
<ST4000VN000-1H4168 SC46>          at scbus0 target 0 lun 0 (ada0,pass0)
<ST4000VN000-1H4168 SC46>          at scbus1 target 0 lun 0 (pass1,ada1)
<Samsung SSD 850 EVO 250GB EMT02B6Q> at scbus2 target 0 lun 0 (ada2,pass2)
<AHCI SGPIO Enclosure 1.00 0001>   at scbus6 target 0 lun 0 (ses0,pass3)
<WDC WD40EFRX 82.00A82>            at scbus7 target 0 lun 0 (da0,pass4)
"""

LSBLK = """\
sda     1
sdb     1
nvme0n1 0
"""

SMARTCTL = """\
ID# ATTRIBUTE_NAME          FLAG     VALUE WORST THRESH TYPE      UPDATED  WHEN_FAILED RAW_VALUE
  1 Raw_Read_Error_Rate     0x000f   117   099   006    Pre-fail  Always       -       160379424
194 Temperature_Celsius     0x0022   036   040   000    Old_age   Always       -       36 (0 17 0 0 0)
"""


class TestParsers(unittest.TestCase):
    def test_sysctl_core_temps(self):
        self.assertEqual(parse_sysctl_core_temps(SYSCTL), [44.0, 47.0, 41.0, 42.0])

    def test_camcontrol_skips_ssd_and_enclosures(self):
        self.assertEqual(parse_camcontrol_devlist(CAMCONTROL), ["ada0", "ada1", "da0"])

    def test_lsblk_rotational(self):
        self.assertEqual(parse_lsblk_rotational(LSBLK), ["sda", "sdb"])

    def test_smartctl_temperature(self):
        self.assertEqual(parse_smartctl_temperature(SMARTCTL), 36.0)

    def test_smartctl_without_temperature(self):
        self.assertIsNone(parse_smartctl_temperature("Smartctl open device: /dev/ada9 failed"))

    def test_smartctl_zero_is_invalid(self):
        self.assertIsNone(parse_smartctl_temperature(SMARTCTL.replace("36 (0", "0 (0")))


class TestSummarize(unittest.TestCase):
    def test_aggregates(self):
        sample = summarize_temperatures(41.0, [33.0, 37.0, 35.0, 36.0])
        self.assertEqual(sample.cpu_max, 41.0)
        self.assertEqual(sample.hd_min, 33.0)
        self.assertEqual(sample.hd_max, 37.0)
        self.assertAlmostEqual(sample.hd_avg, 35.25)
        self.assertEqual(sample.hd_readings, (33.0, 37.0, 35.0, 36.0))
        self.assertTrue(sample.storage_valid)

    def test_min_le_avg_le_max(self):
        sample = summarize_temperatures(None, [30.0, 45.0, 38.0])
        self.assertLessEqual(sample.hd_min, sample.hd_avg)
        self.assertLessEqual(sample.hd_avg, sample.hd_max)

    def test_no_readings_is_invalid(self):
        sample = summarize_temperatures(41.0, [])
        self.assertIsNone(sample.hd_max)
        self.assertIsNone(sample.hd_avg)
        self.assertFalse(sample.storage_valid)


class TestHostSensors(unittest.TestCase):
    def test_cpu_temperature_is_max_core(self):
        sensors = HostSensors()
        with mock.patch.object(sensors, "_output", return_value=SYSCTL):
            self.assertEqual(sensors.read_cpu_temperature(), 47.0)

    def test_cpu_temperature_unreadable(self):
        sensors = HostSensors()
        with mock.patch.object(sensors, "_output", return_value=None):
            self.assertIsNone(sensors.read_cpu_temperature())

    def test_cpu_temperature_from_ipmi(self):
        sensors = HostSensors(cpu_temp_source="ipmi")
        output = "Locating sensor record...\nSensor ID : CPU Temp (0x1)\n Sensor Reading : 52 (+/- 0) degrees C\n"
        with mock.patch.object(sensors, "_output", return_value=output):
            self.assertEqual(sensors.read_cpu_temperature(), 52.0)

    def test_unreadable_drives_are_skipped(self):
        sensors = HostSensors()
        outputs = {"/dev/ada0": SMARTCTL, "/dev/ada1": "", "/dev/ada2": SMARTCTL.replace("36 (0", "39 (0")}
        with mock.patch.object(sensors, "_output", side_effect=lambda args: outputs[args[-1]]):
            self.assertEqual(sensors.read_storage_temperatures(["ada0", "ada1", "ada2"]), [36.0, 39.0])

    @mock.patch("hybridfan.sensors.platform.system", return_value="FreeBSD")
    def test_enumerate_freebsd(self, system):
        sensors = HostSensors()
        with mock.patch.object(sensors, "_output", return_value=CAMCONTROL) as output:
            self.assertEqual(sensors.enumerate_storage_devices(), ["ada0", "ada1", "da0"])
        output.assert_called_once_with(["camcontrol", "devlist"])

    @mock.patch("hybridfan.sensors.platform.system", return_value="Linux")
    def test_enumerate_linux(self, system):
        sensors = HostSensors()
        with mock.patch.object(sensors, "_output", return_value=LSBLK):
            self.assertEqual(sensors.enumerate_storage_devices(), ["sda", "sdb"])


if __name__ == "__main__":
    unittest.main()
