############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# document.py: Unified metrics document served to dashboards
#
############################################################

"""Builds the unified metrics document published every control tick."""

import dataclasses
from typing import Any, Dict, Iterable, List

from temper.core.chassis.models import ChassisTelemetrySnapshot
from temper.core.gpu.models import GpuTelemetrySnapshot
from temper.core.host import HostSnapshot
from temper.core.inference.models import InferenceServiceSnapshot

EMPTY_DOCUMENT: Dict[str, Any] = {"host": {}, "ai_service": {}, "chassis": {}, "gpus": []}


def host_section(host: HostSnapshot) -> Dict[str, Any]:
    return {
        "cpu_usage_percent": round(host.cpu_usage_percent, 2),
        "mem_total": host.mem_total,
        "mem_available": host.mem_available,
        "load_avg": {
            "1m": host.load_avg_1m,
            "5m": host.load_avg_5m,
            "15m": host.load_avg_15m,
        },
        "uptime": host.uptime,
    }


def ai_service_section(inference: InferenceServiceSnapshot) -> Dict[str, Any]:
    section: Dict[str, Any] = {
        "status": inference.status.value,
        "model": inference.model_name,
        "model_path": inference.model_path,
        "load_progress": inference.load_progress,
        "n_ctx": inference.n_ctx,
        "slots_used": inference.slots_used,
        "slots_total": inference.slots_total,
        "slots": [dataclasses.asdict(slot) for slot in inference.slots],
    }
    section.update(dataclasses.asdict(inference.metrics))
    return section


def chassis_section(chassis: ChassisTelemetrySnapshot) -> Dict[str, Any]:
    return {
        "ipmi_available": chassis.available,
        "inlet_temp": chassis.inlet_temp,
        "exhaust_temp": chassis.exhaust_temp,
        "power_consumption": chassis.power_consumption,
        "fan_speeds": list(chassis.fan_speeds),
        "cpu_temps": list(chassis.cpu_temps),
        "psu1_current": chassis.psu1_current,
        "psu2_current": chassis.psu2_current,
        "psu1_voltage": chassis.psu1_voltage,
        "psu2_voltage": chassis.psu2_voltage,
        "target_fan_speed": chassis.target_fan_speed,
    }


def gpu_section(gpu: GpuTelemetrySnapshot) -> Dict[str, Any]:
    return {
        "index": gpu.index,
        "name": gpu.name,
        "serial": gpu.serial,
        "vbios": gpu.vbios,
        "p_state": gpu.p_state,
        "p_state_description": gpu.p_state_description,
        "temperature": gpu.temperature,
        "fan_speed_percent": gpu.fan_speed,
        "target_fan_percent": gpu.target_fan,
        "power_usage_mw": gpu.power_usage,
        "power_limit_mw": gpu.power_limit,
        "utilization": {
            "gpu": gpu.utilization_gpu,
            "memory": gpu.utilization_memory,
        },
        "memory": {
            "total": gpu.memory_total,
            "used": gpu.memory_used,
        },
        "clocks": dataclasses.asdict(gpu.clocks),
        "pcie": {
            "tx_throughput_kbs": gpu.pcie.tx_throughput,
            "rx_throughput_kbs": gpu.pcie.rx_throughput,
            "gen": gpu.pcie.gen,
            "width": gpu.pcie.width,
        },
        "ecc": dataclasses.asdict(gpu.ecc),
        "processes": [dataclasses.asdict(p) for p in gpu.processes],
        "throttle_reasons": gpu.throttle_reasons,
        "throttle_alert": gpu.throttle_alert,
        "reactive_override": gpu.reactive_override,
    }


def build_document(
    gpus: Iterable[GpuTelemetrySnapshot],
    host: HostSnapshot,
    chassis: ChassisTelemetrySnapshot,
    inference: InferenceServiceSnapshot,
) -> Dict[str, Any]:
    """Join all telemetry sources into one JSON-serializable document."""
    gpu_list: List[Dict[str, Any]] = [gpu_section(gpu) for gpu in gpus]
    return {
        "host": host_section(host),
        "ai_service": ai_service_section(inference),
        "chassis": chassis_section(chassis),
        "gpus": gpu_list,
    }
