############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# parsing.py: Parsers for llama.cpp server API payloads
#
############################################################

"""Parsers for llama.cpp server payloads.

All parsers are lenient: a field that is missing or fails to coerce falls
back to its default instead of failing the whole payload.
"""

import math
from typing import Any, List, Optional, Tuple

from prometheus_client.parser import text_string_to_metric_families

from temper.core.inference.models import (
    InferenceStatus,
    ModelProps,
    ServerMetrics,
    SlotMetrics,
)

METRIC_PREFIX = "llamacpp:"

# ServerMetrics field -> cast applied to the sample value
_METRIC_FIELDS = {
    "prompt_tokens_total": int,
    "tokens_predicted_total": int,
    "prompt_seconds_total": float,
    "tokens_predicted_seconds_total": float,
    "n_decode_total": int,
    "n_busy_slots_per_decode": float,
    "prompt_tokens_seconds": float,
    "predicted_tokens_seconds": float,
    "kv_cache_usage_ratio": float,
    "kv_cache_tokens": int,
    "requests_processing": int,
    "requests_deferred": int,
    "n_tokens_max": int,
}

_IDLE_STATES = (0, "0", "idle")


def _as_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _section(obj: dict, key: str) -> dict:
    value = obj.get(key)
    return value if isinstance(value, dict) else {}


# ---- /v1/models ----


def _entry_status(entry: dict) -> Optional[str]:
    status = entry.get("status")
    if isinstance(status, dict):
        value = status.get("value")
        return value if isinstance(value, str) else None
    if isinstance(status, str):
        return status
    return None


def scan_catalog(payload: Any) -> Tuple[InferenceStatus, Optional[str], float]:
    """Find the first loading or loaded model in a ``/v1/models`` payload.

    Returns ``(status, model_id, load_progress)``. When nothing is loading
    or loaded the service is IDLE with no model.
    """
    entries = payload.get("data") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        entries = []

    for entry in entries:
        if not isinstance(entry, dict):
            continue
        status = _entry_status(entry)
        model_id = str(entry.get("id") or "Unknown")
        if status == "loading":
            progress = _as_float(_section(entry, "status").get("load_progress"))
            return InferenceStatus.LOADING, model_id, progress
        if status in ("loaded", "ready"):
            return InferenceStatus.READY, model_id, 1.0

    return InferenceStatus.IDLE, None, 0.0


# ---- /slots ----


def parse_slot(raw: dict) -> SlotMetrics:
    """Build a SlotMetrics from one ``/slots`` entry.

    Timing fields are looked up on the slot first, then in its ``timings``
    object.
    """
    timings = _section(raw, "timings")

    def timing(key: str) -> Any:
        value = raw.get(key)
        return value if value is not None else timings.get(key)

    state = raw.get("state")
    kv = _section(raw, "kv_cache")
    perf = _section(raw, "performance")  # may be null

    kv_pos_max = _as_int(kv.get("pos_max"), -1)
    kv_cells_used = _as_int(kv.get("cells_used"))
    if kv:
        tokens_cached = kv_pos_max + 1 if kv_pos_max >= 0 else kv_cells_used
    else:
        tokens_cached = 0

    return SlotMetrics(
        id=_as_int(raw.get("id"), -1),
        n_ctx=_as_int(raw.get("n_ctx")),
        state="unknown" if state is None else str(state),
        is_processing=raw.get("is_processing") is True,
        prompt_n=_as_int(timing("prompt_n")),
        prompt_ms=_as_float(timing("prompt_ms")),
        predicted_n=_as_int(timing("predicted_n")),
        predicted_ms=_as_float(timing("predicted_ms")),
        cache_n=_as_int(timing("cache_n")),
        tokens_cached=tokens_cached,
        kv_pos_min=_as_int(kv.get("pos_min"), -1),
        kv_pos_max=kv_pos_max,
        kv_cells_used=kv_cells_used,
        kv_utilization=_as_float(kv.get("utilization")),
        kv_cache_efficiency=_as_float(kv.get("cache_efficiency")),
        prompt_tokens_per_sec=_as_float(perf.get("prompt_tokens_per_sec")),
        generation_tokens_per_sec=_as_float(perf.get("generation_tokens_per_sec")),
        speculative_acceptance_rate=_as_float(perf.get("speculative_acceptance_rate")),
        draft_tokens_total=_as_int(perf.get("draft_tokens_total")),
        draft_tokens_accepted=_as_int(perf.get("draft_tokens_accepted")),
    )


def slot_is_used(raw: dict) -> bool:
    if raw.get("is_processing") is True:
        return True
    state = raw.get("state")
    return state is not None and state not in _IDLE_STATES


def parse_slots(payload: Any) -> Tuple[Tuple[SlotMetrics, ...], int]:
    """Parse a ``/slots`` payload into ``(slots, slots_used)``.

    Raises ValueError when the payload is not a list of slots.
    """
    if not isinstance(payload, list):
        raise ValueError("slots payload is not a list")

    slots: List[SlotMetrics] = []
    used = 0
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        slots.append(parse_slot(raw))
        if slot_is_used(raw):
            used += 1
    return tuple(slots), used


# ---- /metrics ----


def _sample_value(line: str, name: str) -> Optional[float]:
    try:
        for family in text_string_to_metric_families(line):
            for sample in family.samples:
                if sample.name == name:
                    return sample.value
    except (ValueError, IndexError, KeyError):
        return None
    return None


def parse_server_metrics(text: str) -> ServerMetrics:
    """Parse llama.cpp Prometheus text into ServerMetrics.

    Each line is parsed on its own so one malformed line cannot hide the
    rest. Missing series keep their default.
    """
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith(METRIC_PREFIX):
            continue
        key = line[len(METRIC_PREFIX):].split("{", 1)[0].split(" ", 1)[0]
        cast = _METRIC_FIELDS.get(key)
        if cast is None or key in values:
            continue
        value = _sample_value(line, METRIC_PREFIX + key)
        if value is None or not math.isfinite(value):
            continue
        values[key] = cast(value)
    return ServerMetrics(**values)


# ---- /props ----


def parse_props(payload: Any) -> ModelProps:
    if not isinstance(payload, dict):
        return ModelProps()

    alias = payload.get("model_alias")
    path = payload.get("model_path")

    n_ctx = payload.get("n_ctx")
    if n_ctx is None:
        n_ctx = _section(payload, "default_generation_settings").get("n_ctx")

    return ModelProps(
        model_alias=alias if isinstance(alias, str) and alias else None,
        model_path=path if isinstance(path, str) and path else None,
        n_ctx=_as_int(n_ctx) if n_ctx is not None else None,
    )
