############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# monitor.py: Background poller for a llama.cpp inference server
#
############################################################

"""Background poller for a local llama.cpp-style inference server."""

import dataclasses
import threading
from typing import Any, Optional

import httpx

from temper.core.inference.models import InferenceServiceSnapshot, InferenceStatus
from temper.core.inference.parsing import (
    parse_props,
    parse_server_metrics,
    parse_slots,
    scan_catalog,
)
from temper.logging_config import get_logger

logger = get_logger(__name__)

HEALTH_TIMEOUT = 1.0
MODELS_TIMEOUT = 10.0
SLOTS_TIMEOUT = 10.0
METRICS_TIMEOUT = 10.0
PROPS_TIMEOUT = 2.0


class InferenceServiceMonitor:
    """
    Polls a llama.cpp server and keeps the latest InferenceServiceSnapshot.

    Endpoints used:
    - GET /health - liveness; any failure means OFFLINE
    - GET /v1/models - model catalog and load state
    - GET /slots, /metrics, /props - detail, only while a model is READY

    A failed detail query leaves the fields it owns unchanged.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8081,
        api_prefix: str = "",
        api_key: Optional[str] = None,
        poll_interval: float = 0.1,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = f"http://{host}:{port}{api_prefix.rstrip('/')}"
        self.poll_interval = poll_interval

        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            transport=transport,
        )

        self._lock = threading.Lock()
        self._snapshot = InferenceServiceSnapshot()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def get_snapshot(self) -> InferenceServiceSnapshot:
        with self._lock:
            return self._snapshot

    def _publish(self, snapshot: InferenceServiceSnapshot) -> None:
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
        if previous.status != snapshot.status or previous.model_id != snapshot.model_id:
            logger.info(
                "inference_status_changed",
                status=snapshot.status.value,
                model=snapshot.model_name,
                previous=previous.status.value,
            )

    # ---- Lifecycle ----

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="inference-monitor",
            daemon=True,
        )
        self._thread.start()
        logger.info("inference_monitor_started", base_url=self.base_url)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._client.close()
        logger.info("inference_monitor_stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error("inference_poll_error", error=str(e), exc_info=True)
            self._stop_event.wait(self.poll_interval)

    # ---- HTTP ----

    def _get(self, path: str, timeout: float, model: Optional[str] = None) -> httpx.Response:
        params = {"model": model} if model is not None else None
        response = self._client.get(path, params=params, timeout=timeout)
        response.raise_for_status()
        return response

    def _get_json(self, path: str, timeout: float, model: Optional[str] = None) -> Any:
        return self._get(path, timeout, model).json()

    # ---- Poll cycle ----

    def poll_once(self) -> InferenceServiceSnapshot:
        """Run one poll cycle and return the resulting snapshot."""
        try:
            self._get("/health", HEALTH_TIMEOUT)
        except httpx.HTTPError as e:
            logger.debug("inference_health_failed", error=str(e))
            snapshot = InferenceServiceSnapshot(status=InferenceStatus.OFFLINE)
            self._publish(snapshot)
            return snapshot

        try:
            catalog = self._get_json("/v1/models", MODELS_TIMEOUT)
        except (httpx.HTTPError, ValueError) as e:
            # Server is alive but busy; keep the last known state
            logger.debug("inference_models_failed", error=str(e))
            return self.get_snapshot()

        previous = self.get_snapshot()
        status, model_id, progress = scan_catalog(catalog)

        if status == InferenceStatus.IDLE:
            snapshot = dataclasses.replace(
                previous,
                status=status,
                model_id=None,
                model_name=None,
                model_path=None,
                load_progress=0.0,
            )
        elif status == InferenceStatus.LOADING:
            snapshot = dataclasses.replace(
                self._carry_over(previous, model_id),
                status=status,
                model_id=model_id,
                model_name=model_id,
                load_progress=progress,
            )
        else:
            snapshot = self._poll_ready(previous, model_id)

        self._publish(snapshot)
        return snapshot

    @staticmethod
    def _carry_over(
        previous: InferenceServiceSnapshot, model_id: Optional[str]
    ) -> InferenceServiceSnapshot:
        # Details of a different model must not survive under the new id
        if previous.model_id == model_id:
            return previous
        return InferenceServiceSnapshot()

    def _poll_ready(
        self, previous: InferenceServiceSnapshot, model_id: str
    ) -> InferenceServiceSnapshot:
        snapshot = dataclasses.replace(
            self._carry_over(previous, model_id),
            status=InferenceStatus.READY,
            model_id=model_id,
            model_name=previous.model_name if previous.model_id == model_id else model_id,
            load_progress=1.0,
        )

        try:
            slots, used = parse_slots(self._get_json("/slots", SLOTS_TIMEOUT, model_id))
            snapshot = dataclasses.replace(
                snapshot, slots=slots, slots_total=len(slots), slots_used=used
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("inference_slots_failed", model=model_id, error=str(e))

        try:
            metrics = parse_server_metrics(self._get("/metrics", METRICS_TIMEOUT, model_id).text)
            snapshot = dataclasses.replace(snapshot, metrics=metrics)
        except httpx.HTTPError as e:
            logger.debug("inference_metrics_failed", model=model_id, error=str(e))

        try:
            props = parse_props(self._get_json("/props", PROPS_TIMEOUT, model_id))
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("inference_props_failed", model=model_id, error=str(e))
        else:
            snapshot = dataclasses.replace(
                snapshot,
                model_name=props.model_alias or model_id,
                model_path=props.model_path if props.model_path is not None else snapshot.model_path,
                n_ctx=props.n_ctx if props.n_ctx is not None else snapshot.n_ctx,
            )

        return snapshot
