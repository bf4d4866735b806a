############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# main.py: Command-line entry point and daemon wiring
#
############################################################

"""Command-line entry point: wires collaborators and runs the control loop."""

import argparse
import signal
import sys
import threading
from typing import List, Optional

from temper.api.snapshot_server import MetricsSnapshotServer
from temper.core.chassis.controller import ChassisTelemetryController
from temper.core.curve import CurveController
from temper.core.gpu.nvml import NVMLError, NVMLManager
from temper.core.host import HostMonitor
from temper.core.inference.monitor import InferenceServiceMonitor
from temper.core.orchestrator import ControlLoopOrchestrator
from temper.logging_config import get_logger, setup_logging
from temper.settings import Settings, get_settings

logger = get_logger(__name__)


class ShutdownHandler:
    """Turns SIGINT/SIGTERM into an orderly shutdown of the control loop."""

    def __init__(
        self,
        stop_event: threading.Event,
        orchestrator: ControlLoopOrchestrator,
        nvml: NVMLManager,
    ):
        self.stop_event = stop_event
        self.orchestrator = orchestrator
        self.nvml = nvml

    def install(self) -> None:
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        self.stop_event.set()

    def shutdown(self) -> None:
        self.stop_event.set()
        self.orchestrator.shutdown()
        self.nvml.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="temper",
        description="GPU thermal and power control daemon",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fanctl = subparsers.add_parser("fanctl", help="run the fan and power control loop")
    fanctl.add_argument(
        "setpoints",
        nargs="*",
        metavar="TEMP:PERCENT",
        help="fan curve setpoints, e.g. 30:20 60:50 80:100 (overrides FAN_SETPOINTS)",
    )
    fanctl.add_argument("--port", type=int, help="metrics snapshot server port")
    fanctl.add_argument("--secret", help="shared secret required by the snapshot server")
    fanctl.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Layer command-line options over environment settings."""
    overrides = {}
    if args.setpoints:
        overrides["fan_setpoints"] = " ".join(args.setpoints)
    if args.port is not None:
        overrides["metrics_port"] = args.port
    if args.secret:
        overrides["metrics_secret"] = args.secret
    if args.verbose:
        overrides["verbose"] = True
    return settings.model_copy(update=overrides) if overrides else settings


def run_fanctl(settings: Settings) -> int:
    try:
        nvml = NVMLManager()
        handles = nvml.get_handles()
    except NVMLError as e:
        logger.error("nvml_init_failed", error=str(e))
        return 1

    fan_curve = CurveController.from_setpoints(settings.fan_setpoints)
    power_curve = CurveController.from_setpoints(settings.power_setpoints)
    chassis_curve = CurveController.from_setpoints(settings.chassis_fan_setpoints)

    chassis = ChassisTelemetryController()
    chassis.configure(
        settings.ipmi_host,
        settings.ipmi_user,
        settings.ipmi_pass,
        backend=settings.ipmi_backend,
        ssh_target=settings.ipmi_ssh_target,
    )

    inference = InferenceServiceMonitor(
        host=settings.llama_host,
        port=settings.llama_port,
        api_prefix=settings.llama_api_prefix,
        api_key=settings.llama_api_key,
        poll_interval=settings.llama_poll_interval,
    )
    server = MetricsSnapshotServer(
        host=settings.metrics_host,
        port=settings.metrics_port,
        secret=settings.metrics_secret,
    )

    orchestrator = ControlLoopOrchestrator(
        nvml,
        fan_curve,
        power_curve,
        chassis_curve,
        chassis,
        inference,
        HostMonitor(),
        server,
        loop_interval=settings.loop_interval,
        chassis_poll_interval=settings.chassis_poll_interval,
        chassis_fan_every_n_ticks=settings.chassis_fan_every_n_ticks,
        safety_power_watts=settings.safety_power_watts,
        handles=handles,
    )

    stop_event = threading.Event()
    handler = ShutdownHandler(stop_event, orchestrator, nvml)
    handler.install()

    logger.info(
        "temper_starting",
        version=settings.app_version,
        gpus=len(handles),
        chassis_backend=chassis.backend_name,
        inference_url=inference.base_url,
    )

    server.start()
    inference.start()
    try:
        orchestrator.run(stop_event)
    finally:
        handler.shutdown()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = apply_overrides(get_settings(), args)
    setup_logging(settings)

    if args.command == "fanctl":
        return run_fanctl(settings)
    return 2


if __name__ == "__main__":
    sys.exit(main())
