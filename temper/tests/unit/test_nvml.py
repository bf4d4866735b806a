############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# test_nvml.py: Unit tests for the NVML wrapper
#
############################################################

"""Unit tests for NVMLManager with a mocked pynvml."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from temper.core.gpu import nvml
from temper.core.gpu.models import (
    THROTTLE_HW_SLOWDOWN,
    THROTTLE_SW_POWER_CAP,
    THROTTLE_SW_THERMAL_SLOWDOWN,
    GpuTelemetrySnapshot,
)


class FakeNVMLError(Exception):
    pass


@pytest.fixture
def mock_pynvml(monkeypatch):
    """Mock pynvml with one healthy device."""
    mock = MagicMock()
    mock.NVMLError = FakeNVMLError
    mock.nvmlDeviceGetCount.return_value = 2
    mock.nvmlDeviceGetHandleByIndex.side_effect = lambda i: f"handle-{i}"
    mock.nvmlDeviceGetTemperature.return_value = 64
    mock.nvmlDeviceGetFanSpeed_v2.return_value = 55
    mock.nvmlDeviceGetPowerUsage.return_value = 215000
    mock.nvmlDeviceGetEnforcedPowerLimit.return_value = 300000
    mock.nvmlDeviceGetUtilizationRates.return_value = SimpleNamespace(gpu=88, memory=40)
    mock.nvmlDeviceGetMemoryInfo.return_value = SimpleNamespace(
        total=48 * 1024**3, used=20 * 1024**3
    )
    mock.nvmlDeviceGetName.return_value = b"NVIDIA RTX A6000"
    mock.nvmlDeviceGetSerial.return_value = "1320021012345"
    mock.nvmlDeviceGetVbiosVersion.return_value = "94.02.5C.00.02"
    mock.nvmlDeviceGetPerformanceState.return_value = 2
    mock.nvmlDeviceGetClockInfo.return_value = 1800
    mock.nvmlDeviceGetMaxClockInfo.return_value = 2100
    mock.nvmlDeviceGetPcieThroughput.return_value = 1024
    mock.nvmlDeviceGetCurrPcieLinkGeneration.return_value = 4
    mock.nvmlDeviceGetCurrPcieLinkWidth.return_value = 16
    mock.nvmlDeviceGetTotalEccErrors.return_value = 0
    mock.nvmlDeviceGetComputeRunningProcesses.return_value = [
        SimpleNamespace(pid=4242, usedGpuMemory=8 * 1024**3)
    ]
    mock.nvmlDeviceGetGraphicsRunningProcesses.return_value = []
    mock.nvmlSystemGetProcessName.return_value = b"llama-server"
    mock.nvmlDeviceGetNumFans.return_value = 2
    mock.nvmlDeviceGetCurrentClocksThrottleReasons.return_value = 0

    monkeypatch.setattr(nvml, "pynvml", mock)
    monkeypatch.setattr(nvml, "NVMLError", FakeNVMLError)
    return mock


@pytest.fixture
def manager(mock_pynvml):
    return nvml.NVMLManager()


class TestLifecycle:

    def test_init_and_shutdown(self, manager, mock_pynvml):
        mock_pynvml.nvmlInit.assert_called_once()
        manager.shutdown()
        manager.shutdown()
        mock_pynvml.nvmlShutdown.assert_called_once()

    def test_init_failure_propagates(self, mock_pynvml):
        mock_pynvml.nvmlInit.side_effect = FakeNVMLError("driver not loaded")
        with pytest.raises(FakeNVMLError):
            nvml.NVMLManager()

    def test_handles(self, manager):
        assert manager.device_count() == 2
        assert manager.get_handles() == ["handle-0", "handle-1"]


class TestReadings:

    def test_core_readings(self, manager):
        assert manager.get_temperature("h") == 64
        assert manager.get_fan_speed("h") == 55
        assert manager.get_power_usage("h") == 215000
        assert manager.get_power_limit("h") == 300000
        assert manager.get_utilization("h") == (88, 40)

    def test_core_reading_errors_propagate(self, manager, mock_pynvml):
        mock_pynvml.nvmlDeviceGetTemperature.side_effect = FakeNVMLError("gpu lost")
        with pytest.raises(FakeNVMLError):
            manager.get_temperature("h")
        mock_pynvml.nvmlDeviceGetCurrentClocksThrottleReasons.side_effect = FakeNVMLError("gpu lost")
        with pytest.raises(FakeNVMLError):
            manager.get_throttle_reasons("h")

    def test_passive_board_readings_default_to_zero(self, manager, mock_pynvml):
        for name in (
            "nvmlDeviceGetFanSpeed_v2",
            "nvmlDeviceGetPowerUsage",
            "nvmlDeviceGetEnforcedPowerLimit",
            "nvmlDeviceGetUtilizationRates",
            "nvmlDeviceGetMemoryInfo",
        ):
            getattr(mock_pynvml, name).side_effect = FakeNVMLError("Not Supported")

        assert manager.get_fan_speed("h") == 0
        assert manager.get_power_usage("h") == 0
        assert manager.get_power_limit("h") == 0
        assert manager.get_utilization("h") == (0, 0)
        assert manager.get_memory_info("h") == (0, 0)

    def test_collect_telemetry_without_fan(self, manager, mock_pynvml):
        mock_pynvml.nvmlDeviceGetFanSpeed_v2.side_effect = FakeNVMLError("Not Supported")
        snap = manager.collect_telemetry(0, "handle-0")
        assert snap.fan_speed == 0
        assert snap.power_usage == 215000
        assert snap.name == "NVIDIA RTX A6000"

    def test_descriptive_readings_default_on_error(self, manager, mock_pynvml):
        for name in (
            "nvmlDeviceGetName",
            "nvmlDeviceGetSerial",
            "nvmlDeviceGetVbiosVersion",
            "nvmlDeviceGetPerformanceState",
            "nvmlDeviceGetClockInfo",
            "nvmlDeviceGetMaxClockInfo",
            "nvmlDeviceGetPcieThroughput",
            "nvmlDeviceGetTotalEccErrors",
            "nvmlDeviceGetComputeRunningProcesses",
        ):
            getattr(mock_pynvml, name).side_effect = FakeNVMLError("not supported")

        assert manager.get_name("h") == "Unknown"
        assert manager.get_serial("h") == "Unknown"
        assert manager.get_vbios_version("h") == "Unknown"
        assert manager.get_power_state("h") == 999
        assert manager.get_clocks("h").max_sm == 0
        assert manager.get_pcie_info("h").tx_throughput == 0
        assert manager.get_pcie_info("h").gen == 4
        assert manager.get_ecc_counts("h").aggregate_double == 0
        assert manager.get_processes("h") == []

    def test_bytes_are_decoded(self, manager):
        assert manager.get_name("h") == "NVIDIA RTX A6000"

    def test_processes(self, manager):
        procs = manager.get_processes("h")
        assert len(procs) == 1
        assert procs[0].pid == 4242
        assert procs[0].name == "llama-server"
        assert procs[0].used_memory == 8 * 1024**3

    def test_collect_telemetry(self, manager):
        snap = manager.collect_telemetry(1, "handle-1")
        assert isinstance(snap, GpuTelemetrySnapshot)
        assert snap.index == 1
        assert snap.name == "NVIDIA RTX A6000"
        assert snap.p_state_description == "Balanced"
        assert snap.fan_speed == 55
        assert snap.utilization_gpu == 88
        assert snap.clocks.graphics == 1800
        assert snap.pcie.width == 16
        assert len(snap.processes) == 1


class TestControl:

    def test_set_fan_speed_on_every_fan(self, manager, mock_pynvml):
        manager.set_fan_speed("h", 70)
        assert mock_pynvml.nvmlDeviceSetFanSpeed_v2.call_count == 2
        mock_pynvml.nvmlDeviceSetFanSpeed_v2.assert_any_call("h", 1, 70)

    def test_set_power_limit_in_milliwatts(self, manager, mock_pynvml):
        manager.set_power_limit("h", 250)
        mock_pynvml.nvmlDeviceSetPowerManagementLimit.assert_called_once_with("h", 250000)

    def test_restore_auto_fans(self, manager, mock_pynvml):
        manager.restore_auto_fans("h")
        assert mock_pynvml.nvmlDeviceSetFanControlPolicy.call_count == 2

    def test_restore_auto_fans_tolerates_errors(self, manager, mock_pynvml):
        mock_pynvml.nvmlDeviceSetFanControlPolicy.side_effect = FakeNVMLError("no permission")
        manager.restore_auto_fans("h")
        mock_pynvml.nvmlDeviceGetNumFans.side_effect = FakeNVMLError("gone")
        manager.restore_auto_fans("h")


class TestThrottleModel:

    def test_thermal_mask(self):
        snap = GpuTelemetrySnapshot(index=0, throttle_reasons=THROTTLE_SW_THERMAL_SLOWDOWN)
        assert snap.thermally_throttled is True
        assert snap.throttle_alert == "SW Thermal Slowdown"

    def test_hw_slowdown_counts_as_thermal(self):
        snap = GpuTelemetrySnapshot(index=0, throttle_reasons=THROTTLE_HW_SLOWDOWN)
        assert snap.thermally_throttled is True
        assert snap.throttle_alert == "HW Slowdown"

    def test_power_cap_is_not_thermal(self):
        snap = GpuTelemetrySnapshot(index=0, throttle_reasons=THROTTLE_SW_POWER_CAP)
        assert snap.thermally_throttled is False
        assert snap.throttle_alert == ""
        assert GpuTelemetrySnapshot(index=0, p_state=7).p_state_description == "Unknown"
