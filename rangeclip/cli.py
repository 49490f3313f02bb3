"""Thin CLI entry point — probes sources, exports range manifests, serves the API."""

import argparse
import logging
import sys
from pathlib import Path

from rangeclip import ffutil
from rangeclip.config import Settings, load_range_manifest, load_settings
from rangeclip.engine import ExportEngine, JobFinished, JobProgress, JobStarted
from rangeclip.errors import RangeClipError
from rangeclip.models import EngineState
from rangeclip.session import Session


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_event(event: object) -> None:
    if isinstance(event, JobStarted):
        print(f"  [start] job {event.job_id}: {event.output_stem}")
    elif isinstance(event, JobProgress):
        print(f"  [{event.fraction:4.0%}] job {event.job_id}")
    elif isinstance(event, JobFinished):
        o = event.outcome
        if o.success:
            print(f"  [done ] job {o.job_id}: {o.output_path}")
        else:
            print(f"  [fail ] job {o.job_id}: {o.reason.value} {o.detail}")


def _cmd_probe(args: argparse.Namespace) -> int:
    meta = ffutil.probe(args.video)
    print(f"{args.video}")
    print(f"  Duration:   {meta.duration:.3f}s")
    print(f"  Frame rate: {meta.fps} ({float(meta.fps):.3f} fps)")
    print(f"  Size:       {meta.width}x{meta.height}")
    print(f"  Codec:      {meta.codec_video}")
    return 0


def _cmd_export(args: argparse.Namespace, settings: Settings) -> int:
    manifest = load_range_manifest(args.manifest)
    output = args.output or manifest.output_folder or settings.output_folder
    if output is None:
        print("Error: no output folder; pass --output or set it in the manifest.", file=sys.stderr)
        return 1

    video_path = manifest.video
    if not video_path.is_absolute():
        video_path = args.manifest.parent / video_path

    settings.input_folder = video_path.parent
    settings.output_folder = output
    session = Session(settings, engine=ExportEngine(settings.export, on_event=_print_event))

    session.load_video(video_path)
    session.import_ranges(manifest.ranges)

    jobs = session.run_export()
    print(f"Exporting {len(jobs)} clip(s) from {video_path.name} to {output}")
    try:
        result = session.engine.wait()
    except KeyboardInterrupt:
        session.cancel_export()
        result = session.engine.wait()

    print()
    print(f"Finished: {result.state.value}")
    for path in result.written:
        print(f"  {path}")
    return 0 if result.state is EngineState.COMPLETED else 2


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    from rangeclip.web import create_app

    if args.input:
        settings.input_folder = args.input
    if args.output:
        settings.output_folder = args.output
    app = create_app(settings)
    print(f"RangeClip API: http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=False)
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="rangeclip",
        description="RangeClip — mark labeled ranges on videos and export them as clips.",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to a JSON settings file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    pr = sub.add_parser("probe", help="Show the metadata ffprobe reports for a video")
    pr.add_argument("video", type=Path, help="Video file")

    ex = sub.add_parser("export", help="Export the ranges listed in a manifest")
    ex.add_argument("--manifest", "-m", type=Path, required=True, help="Range manifest JSON")
    ex.add_argument("--output", "-o", type=Path, help="Output folder")

    serve = sub.add_parser("serve", help="Launch the HTTP API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    serve.add_argument("--input", type=Path, help="Input folder with source videos")
    serve.add_argument("--output", type=Path, help="Output folder for clips")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = load_settings(args.config) if args.config else Settings()

    try:
        ffutil.check_ffmpeg()
        if args.command == "probe":
            code = _cmd_probe(args)
        elif args.command == "export":
            code = _cmd_export(args, settings)
        else:
            code = _cmd_serve(args, settings)
    except (RangeClipError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)
