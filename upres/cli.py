"""Command line interface for upres operations."""

import argparse, json, logging, sys
from pathlib import Path

from upres.config import MODE_ALIASES, MODES, NOISE_LEVELS, PROCESSES, PipelineConfig
from upres.engine import get_onnxruntime_info, get_opencv_info
from upres.errors import Cancelled
from upres.io import resolve_default_output_path
from upres.pipeline import Pipeline


log = logging.getLogger(__name__)

# Keep this mapping aligned with `_parse_arguments()` run option destinations.
_MACHINE_KEY_TO_FLAG = {
    "in": "--in",
    "in_fp": "--in",
    "out": "--out",
    "mode": "--mode",
    "noise_level": "--noise-level",
    "scale_ratio": "--scale-ratio",
    "model_dir": "--model-dir",
    "process": "--process",
    "crop_size": "--crop-size",
    "batch_size": "--batch-size",
}


def _resolve_log_level(args: argparse.Namespace) -> int:
    """Resolve effective logging level from explicit level or verbosity flags."""
    if args.log_level is not None:
        return getattr(logging, args.log_level)

    # Start from INFO, then apply -v and -q offsets with DEBUG/ERROR clamp.
    level = logging.INFO - (10 * int(args.verbose)) + (10 * int(args.quiet))
    return max(logging.DEBUG, min(logging.ERROR, level))


def _configure_logging(args: argparse.Namespace) -> None:
    """Configure stdlib logging using Python default handler routing."""
    effective_level = _resolve_log_level(args)
    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)
    if not root_logger.handlers:
        logging.basicConfig(level=effective_level)


def _find_flag_value(argv: list[str], flag: str) -> str | None:
    """Return the raw value for a CLI flag, supporting '--flag value' and '--flag=value'."""
    for idx, token in enumerate(argv):
        if token == flag:
            return argv[idx + 1] if idx + 1 < len(argv) else None
        if token.startswith(f"{flag}="):
            return token.split("=", 1)[1]
    return None


def _flag_present(argv: list[str], flag: str) -> bool:
    """Return True when a CLI flag is already present in argv."""
    return any(token == flag or token.startswith(f"{flag}=") for token in argv)


def _read_machine_json(machine_json_fp: Path) -> dict[str, object]:
    """Load run machine-interface JSON payload, accepting a nested `run` object."""
    machine_json_path = machine_json_fp.expanduser().resolve()
    assert machine_json_path.exists(), f"machine json does not exist: {machine_json_path}"
    payload = json.loads(machine_json_path.read_text(encoding="utf-8"))
    assert isinstance(payload, dict), f"machine json must be an object: {machine_json_path}"
    if "run" in payload:
        nested_payload = payload["run"]
        assert isinstance(nested_payload, dict), f"machine json 'run' payload must be an object: {machine_json_path}"
        return nested_payload
    return payload


def _build_machine_cli_tokens(payload: dict[str, object], argv: list[str]) -> list[str]:
    """Translate a machine-interface payload into CLI tokens the parser already understands."""
    cli_tokens = []
    for raw_key, value in payload.items():
        key = raw_key.strip().lstrip("-").replace("-", "_")
        if key not in _MACHINE_KEY_TO_FLAG:
            raise ValueError(f"unsupported run machine-json key: {raw_key}")
        cli_flag = _MACHINE_KEY_TO_FLAG[key]
        # Explicit CLI args take precedence.
        if _flag_present(argv, cli_flag) or value is None:
            continue
        cli_tokens.extend([cli_flag, str(value)])
    return cli_tokens


def _inject_machine_json_args(argv: list[str] | None) -> list[str]:
    """Inject run args from machine-interface JSON before strict argparse validation."""
    argv_tokens = list(sys.argv[1:]) if argv is None else list(argv)
    if "run" not in argv_tokens:
        return argv_tokens
    machine_json_raw = _find_flag_value(argv_tokens, "--machine-json")
    if machine_json_raw is None:
        return argv_tokens
    payload = _read_machine_json(Path(machine_json_raw))
    return argv_tokens + _build_machine_cli_tokens(payload, argv_tokens)


def main_cli(args: argparse.Namespace) -> int:
    """Run the CLI command selected by parsed arguments."""
    if args.command == "run":
        config = PipelineConfig.from_mapping(
            {
                "mode": args.mode,
                "noise_level": args.noise_level,
                "scale_ratio": args.scale_ratio,
                "crop_size": args.crop_size,
                "batch_size": args.batch_size,
                "process": args.process,
            }
        )
        output_fp = args.out if args.out is not None else resolve_default_output_path(args.in_fp)
        with Pipeline(config, model_dir=args.model_dir, use_progress=True, logger=log) as pipeline:
            result = pipeline.process_file(args.in_fp, output_fp)
        print(result["output_fp"])
        return 0

    if args.command == "doctor":
        ort_info = get_onnxruntime_info()
        cv2_info = get_opencv_info()
        print(f"onnxruntime_installed={ort_info['installed']}")
        print(f"onnxruntime_version={ort_info['version']}")
        print(f"onnxruntime_available_providers={','.join(ort_info['available_providers'])}")
        print(f"opencv_installed={cv2_info['installed']}")
        print(f"opencv_version={cv2_info['version']}")
        return 0

    raise ValueError(f"unsupported command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Run the upres CLI and return an exit code."""
    args = _parse_arguments(argv)
    _configure_logging(args)
    try:
        return main_cli(args)
    except Cancelled as err:
        log.info(f"{err}")
        return 2
    except Exception as err:
        log.error(f"{err}")
        log.debug("unhandled CLI exception", exc_info=True)
        return 1


def _parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for upres."""
    parser = argparse.ArgumentParser(prog="upres", description="Tiled image denoising and super-resolution.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (repeatable).",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default=None,
        help="Explicit log level override.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Denoise and/or upscale one image.")
    run_parser.add_argument(
        "--machine-json",
        type=Path,
        default=None,
        help="Optional machine-interface JSON with CLI-equivalent run params.",
    )
    run_parser.add_argument("--in", dest="in_fp", type=Path, required=True, help="Input image path.")
    run_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output image path. Defaults to ./<input_stem>_upres.png",
    )
    run_parser.add_argument(
        "--mode",
        choices=MODES + tuple(MODE_ALIASES),
        default="noise_scale",
        help="Reconstruction mode.",
    )
    run_parser.add_argument(
        "--noise-level",
        type=int,
        choices=NOISE_LEVELS,
        default=1,
        help="Denoise network strength.",
    )
    run_parser.add_argument("--scale-ratio", type=float, default=2.0, help="Output/input size ratio.")
    run_parser.add_argument(
        "--model-dir",
        type=Path,
        default=None,
        help="Directory holding noise*/scale2.0x ONNX networks. Defaults to the per-user data directory.",
    )
    run_parser.add_argument("--process", choices=PROCESSES, default="cpu", help="Execution device.")
    run_parser.add_argument("--crop-size", type=int, default=128, help="Tile core edge in pixels.")
    run_parser.add_argument("--batch-size", type=int, default=1, help="Tiles per engine call.")

    subparsers.add_parser("doctor", help="Report runtime dependency diagnostics.")
    return parser.parse_args(_inject_machine_json_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
