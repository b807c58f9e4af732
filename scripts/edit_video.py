#!/usr/bin/env python3
"""
CLI Script: Edit Video
======================

Command-line tool for restyling a video with a natural-language prompt.

Usage:
    python scripts/edit_video.py clip.mp4 --prompt "make it look cyberpunk"
    python scripts/edit_video.py clip.mp4 -p "add snow" --strategy chain --max-frames 20
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from restyler import Config, FramePipeline, PipelineState, SamplingPolicy, Strategy
from restyler.core.exceptions import VideoEditorError
from restyler.media import SMOOTHING_FILTERS, smooth_video
from restyler.utils.storage import save_metadata, save_video


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Restyle a video with an AI image editor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s clip.mp4 -p "make it look cyberpunk"
  %(prog)s clip.mp4 -p "add sunglasses" --strategy broadcast --interval 15
  %(prog)s clip.mp4 -p "watercolor painting" --smooth heavy -o out.mp4
        """,
    )

    parser.add_argument(
        "input",
        help="Source video file",
    )
    parser.add_argument(
        "-p", "--prompt",
        required=True,
        help="Edit to apply to every frame",
    )

    # Sampling
    parser.add_argument(
        "--interval",
        type=int,
        help="Sample every Nth frame (default: from config)",
    )
    parser.add_argument(
        "--max-frames",
        type=int,
        help="Maximum frames to edit (default: from config)",
    )

    # Propagation
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in Strategy],
        help="Propagation strategy (default: from config)",
    )

    # Output
    parser.add_argument(
        "--fps",
        type=int,
        help="Output frame rate (default: from config)",
    )
    parser.add_argument(
        "--format",
        choices=["mp4", "webm"],
        help="Output container (default: from config)",
    )
    parser.add_argument(
        "--smooth",
        choices=list(SMOOTHING_FILTERS),
        help="Apply temporal smoothing to the result (mp4 only)",
    )
    parser.add_argument(
        "-o", "--output",
        help="Output file path (default: <output_path>/<input>_edited.<format>)",
    )

    # Config
    parser.add_argument(
        "--config",
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args()


def print_progress(progress):
    """Print one progress line."""
    marker = "!" if progress.is_error else " "
    print(f"[{progress.completed:>3}/{progress.total:<3}]{marker} {progress.state.value:<22} {progress.message}")


async def main():
    """Main CLI entry point."""
    args = parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(args.input)
    if not input_path.is_file():
        print(f"Error: video not found: {input_path}")
        sys.exit(1)

    try:
        config = Config.load(args.config)
        if args.fps:
            config.reassembly.fps = args.fps
        if args.format:
            config.reassembly.output_format = args.format
        config.reassembly.validate()

        policy = SamplingPolicy(
            interval_frames=args.interval or config.sampling.interval_frames,
            max_frames=args.max_frames or config.sampling.max_frames,
        )
        strategy = Strategy.parse(args.strategy or config.pipeline.strategy)
    except VideoEditorError as e:
        print(f"Error: {e}")
        sys.exit(1)

    output_format = config.reassembly.output_format
    output_path = Path(args.output) if args.output else (
        Path(config.storage.output_path) / f"{input_path.stem}_edited.{output_format}"
    )

    print("=" * 50)
    print("AI Video Restyler")
    print("=" * 50)
    print(f"\nInput: {input_path}")
    print(f"Prompt: {args.prompt}")
    print(f"Sampling: every {policy.interval_frames} frames, up to {policy.max_frames}")

    pipeline = FramePipeline.from_config(config)

    try:
        async with pipeline:
            session = pipeline.start(input_path, args.prompt, policy, strategy)
            print(f"Strategy: {session.strategy.value}")
            print("-" * 50)
            session.progress.add_listener(print_progress)

            await pipeline.run(session)

        print("-" * 50)

        if session.state == PipelineState.COMPLETE:
            video = session.output_video
            if args.smooth:
                if output_format != "mp4":
                    print("Skipping smoothing: only mp4 output can be smoothed")
                else:
                    video = await smooth_video(
                        video,
                        level=args.smooth,
                        session_id=session.session_id,
                        temp_root=config.storage.temp_root,
                    )
            print(f"Video saved: {save_video(video, output_path)}")
            sys.exit(0)

        print(f"Status: {session.state.value}")
        if session.error:
            print(f"Error: {session.error}")

        if session.recovery_options:
            manifest = save_metadata(session.to_dict(), output_path.with_suffix(".session.json"))
            options = ", ".join(sorted(o.value for o in session.recovery_options))
            print(f"Edited frames kept in: {manifest}")
            print(f"Recovery options: {options}")

        sys.exit(1)

    except KeyboardInterrupt:
        print("\nCancelled")
        sys.exit(130)
    except VideoEditorError as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
