"""avorch command-line interface with subcommands.

Usage:
    avorch-cli probe <media>
    avorch-cli trim <video> --start 5 --end 12.5 [--effect brightness:value=0.2] [-o out.mp4]
    avorch-cli merge <project.json> [-o edited_video.mp4] [--quality high] [--resolution 1080p]
    avorch-cli extract-audio <video> [-o extracted_audio.mp3]
    avorch-cli replace-audio <video> <audio> [--mix] [-o out.mp4]
    avorch-cli remove-audio <video> [-o out.mp4]
    avorch-cli thumbnail <video> [--at 3.5] [--width 320] [-o thumb.jpg]
    avorch-cli estimate-size --bitrate 8 --minutes 10
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from avorch.config import configure_logging, settings
from avorch.errors import AVOrchError
from avorch.jobs.orchestrator import OperationOrchestrator
from avorch.models.progress import ProgressEvent
from avorch.models.project import ProjectDocument
from avorch.services.profiles import QUALITY_PRESETS, RESOLUTIONS, estimate_output_size


def _progress_bar(event: ProgressEvent) -> None:
    bar_width = 30
    filled = int(bar_width * event.percent / 100)
    bar = "=" * filled + "-" * (bar_width - filled)
    extra = f" {event.speed:.2f}x" if event.speed else ""
    end = "\n" if event.is_terminal else ""
    print(f"\r  [{bar}] {event.percent:5.1f}% {event.stage.value}{extra}", end=end, flush=True)


def _parse_effect(text: str) -> dict[str, Any]:
    """Parse ``type[:key=value,...]`` into an effect dict."""
    effect_type, _, raw = text.partition(":")
    parameters: dict[str, Any] = {}
    for item in filter(None, raw.split(",")):
        key, sep, value = item.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"Bad effect parameter '{item}' (expected key=value)")
        try:
            parameters[key.strip()] = float(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Effect parameter '{key}' must be a number") from None
    return {"type": effect_type.strip(), "parameters": parameters}


def _encode_options(args: argparse.Namespace) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if args.quality:
        options["quality"] = args.quality
    if args.resolution:
        options["resolution"] = args.resolution
    if args.bitrate:
        options["bitrate_mbps"] = args.bitrate
    if args.keep_partial:
        options["keep_partial_output"] = True
    return options


def _output(args: argparse.Namespace) -> dict[str, Any]:
    return {"output_path": str(Path(args.output).resolve())} if args.output else {}


def build_params(args: argparse.Namespace) -> tuple[str, dict[str, Any]]:
    """Map parsed arguments to (operation type, request parameters)."""
    command = args.command
    if command == "probe":
        return "probe", {"path": args.input}

    if command == "trim":
        params = {
            "input_path": args.input,
            "start_time": args.start,
            "end_time": args.end,
            "effects": args.effect or [],
            **_encode_options(args),
            **_output(args),
        }
        return "trim", params

    if command == "merge":
        project = ProjectDocument.load(Path(args.project))
        params = {
            "segments": [s.model_dump(mode="json") for s in project.segments],
            "transitions": [t.model_dump(mode="json") for t in project.transitions],
            **_encode_options(args),
            **_output(args),
        }
        return "merge", params

    if command == "extract-audio":
        return "extract-audio", {"input_path": args.input, **_output(args)}

    if command == "replace-audio":
        params = {
            "video_path": args.video,
            "audio_path": args.audio,
            "mode": "mix" if args.mix else "replace",
            **_output(args),
        }
        return "replace-audio", params

    if command == "remove-audio":
        return "remove-audio", {"input_path": args.input, **_output(args)}

    if command == "thumbnail":
        params = {"input_path": args.input, **_output(args)}
        if args.at is not None:
            params["timestamp"] = args.at
        if args.width:
            params["width"] = args.width
        return "generate-thumbnail", params

    raise ValueError(f"Unknown command: {command}")


async def cmd_operation(args: argparse.Namespace) -> int:
    """Run one operation to completion, rendering its progress."""
    try:
        op_type, params = build_params(args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    orchestrator = OperationOrchestrator.from_settings(settings)

    try:
        operation_id = orchestrator.submit(op_type, params)
        print(f"{op_type}: {operation_id}")
        if op_type != "probe":
            orchestrator.subscribe(operation_id, _progress_bar)
        result = await orchestrator.wait(operation_id)
    except AVOrchError as e:
        print(f"\nError: {e.describe()}", file=sys.stderr)
        return 1
    finally:
        await orchestrator.shutdown()

    if op_type == "probe":
        print(json.dumps(result.data["asset"], indent=2, ensure_ascii=False))
    else:
        print(f"\nDone: {result.output_path}")
        for key, value in result.data.items():
            print(f"  {key}: {value}")
    return 0


def cmd_estimate_size(args: argparse.Namespace) -> int:
    estimate = estimate_output_size(args.bitrate, args.minutes)
    print(f"{estimate.formatted} ({estimate.mb} MB, {estimate.gb} GB)")
    return 0


def _add_encode_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--quality", choices=sorted(QUALITY_PRESETS), help=f"Quality preset (default: {settings.default_quality})")
    parser.add_argument("--resolution", choices=sorted(RESOLUTIONS), help=f"Output resolution (default: {settings.default_resolution})")
    parser.add_argument("--bitrate", type=float, help="Bitrate override in Mbps")
    parser.add_argument("--keep-partial", action="store_true", help="Keep partial output on failure")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="avorch-cli",
        description="avorch - media editing operations over ffmpeg",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: from settings)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- probe ---
    p_probe = subparsers.add_parser("probe", help="Show media metadata")
    p_probe.add_argument("input", type=str, help="Video or audio file")

    # --- trim ---
    p_trim = subparsers.add_parser("trim", help="Cut a segment, applying effects")
    p_trim.add_argument("input", type=str, help="Input video file")
    p_trim.add_argument("--start", type=float, required=True, help="Start time in seconds")
    p_trim.add_argument("--end", type=float, required=True, help="End time in seconds")
    p_trim.add_argument("--effect", type=_parse_effect, action="append",
                        help="Effect as type[:key=value,...], e.g. fade-in:duration=1 (repeatable)")
    p_trim.add_argument("-o", "--output", type=str, help="Output path")
    _add_encode_arguments(p_trim)

    # --- merge ---
    p_merge = subparsers.add_parser("merge", help="Join the segments of a project document")
    p_merge.add_argument("project", type=str, help="Project document (JSON)")
    p_merge.add_argument("-o", "--output", type=str, help="Output path (default: edited_video.mp4)")
    _add_encode_arguments(p_merge)

    # --- extract-audio ---
    p_extract = subparsers.add_parser("extract-audio", help="Extract the audio track")
    p_extract.add_argument("input", type=str, help="Input video file")
    p_extract.add_argument("-o", "--output", type=str, help="Output path (default: extracted_audio.mp3)")

    # --- replace-audio ---
    p_replace = subparsers.add_parser("replace-audio", help="Replace or mix the audio track")
    p_replace.add_argument("video", type=str, help="Input video file")
    p_replace.add_argument("audio", type=str, help="New audio file")
    p_replace.add_argument("--mix", action="store_true", help="Mix with the existing audio instead of replacing it")
    p_replace.add_argument("-o", "--output", type=str, help="Output path")

    # --- remove-audio ---
    p_remove = subparsers.add_parser("remove-audio", help="Drop all audio")
    p_remove.add_argument("input", type=str, help="Input video file")
    p_remove.add_argument("-o", "--output", type=str, help="Output path")

    # --- thumbnail ---
    p_thumb = subparsers.add_parser("thumbnail", help="Write one frame as an image")
    p_thumb.add_argument("input", type=str, help="Input video file")
    p_thumb.add_argument("--at", type=float, help="Timestamp in seconds (default: 10%% of duration)")
    p_thumb.add_argument("--width", type=int, help="Image width in pixels")
    p_thumb.add_argument("-o", "--output", type=str, help="Output image path")

    # --- estimate-size ---
    p_size = subparsers.add_parser("estimate-size", help="Estimate output file size")
    p_size.add_argument("--bitrate", type=float, required=True, help="Bitrate in Mbps")
    p_size.add_argument("--minutes", type=float, required=True, help="Duration in minutes")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)

    if args.command == "estimate-size":
        sys.exit(cmd_estimate_size(args))
    sys.exit(asyncio.run(cmd_operation(args)))


if __name__ == "__main__":
    main()
