############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# models.py: Inference service status and telemetry models
#
############################################################

"""Inference service telemetry data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class InferenceStatus(str, Enum):
    """Lifecycle state of the monitored inference service."""

    OFFLINE = "OFFLINE"  # /health not answering
    LOADING = "LOADING"  # a model is being loaded
    READY = "READY"  # a model is loaded and serving
    IDLE = "IDLE"  # server up, no model loaded


@dataclass(frozen=True)
class SlotMetrics:
    """One inference slot with its KV cache and performance counters."""

    id: int = -1
    n_ctx: int = 0
    state: str = "unknown"
    is_processing: bool = False

    # Timings
    prompt_n: int = 0
    prompt_ms: float = 0.0
    predicted_n: int = 0
    predicted_ms: float = 0.0
    cache_n: int = 0

    # KV cache
    tokens_cached: int = 0
    kv_pos_min: int = -1
    kv_pos_max: int = -1
    kv_cells_used: int = 0
    kv_utilization: float = 0.0
    kv_cache_efficiency: float = 0.0

    # Performance (speculative decoding fields stay 0 without a draft model)
    prompt_tokens_per_sec: float = 0.0
    generation_tokens_per_sec: float = 0.0
    speculative_acceptance_rate: float = 0.0
    draft_tokens_total: int = 0
    draft_tokens_accepted: int = 0


@dataclass(frozen=True)
class ServerMetrics:
    """Global counters from the Prometheus ``/metrics`` endpoint."""

    prompt_tokens_total: int = 0
    tokens_predicted_total: int = 0
    prompt_seconds_total: float = 0.0
    tokens_predicted_seconds_total: float = 0.0
    n_decode_total: int = 0
    n_busy_slots_per_decode: float = 0.0
    prompt_tokens_seconds: float = 0.0
    predicted_tokens_seconds: float = 0.0
    kv_cache_usage_ratio: float = 0.0
    kv_cache_tokens: int = 0
    requests_processing: int = 0
    requests_deferred: int = 0
    n_tokens_max: int = 0


@dataclass(frozen=True)
class ModelProps:
    """Model properties from ``/props``; None means the field was absent."""

    model_alias: Optional[str] = None
    model_path: Optional[str] = None
    n_ctx: Optional[int] = None


@dataclass(frozen=True)
class InferenceServiceSnapshot:
    """Latest known state of the inference service.

    Replaced wholesale each poll cycle; partial failures carry the previous
    values forward via ``dataclasses.replace``.
    """

    status: InferenceStatus = InferenceStatus.OFFLINE
    model_id: Optional[str] = None  # catalog id, used in per-model queries
    model_name: Optional[str] = None  # alias from /props, else the catalog id
    model_path: Optional[str] = None
    load_progress: float = 0.0
    n_ctx: int = 0
    slots_used: int = 0
    slots_total: int = 0
    slots: Tuple[SlotMetrics, ...] = ()
    metrics: ServerMetrics = field(default_factory=ServerMetrics)
