#!/usr/bin/env python3
"""
Recovery Workflow Example
=========================

Runs a restyling session while streaming its progress, then walks the
recovery options if frames fail to edit or the encode keeps failing.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add the project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from restyler import FramePipeline, PipelineState, RecoveryOption, SamplingPolicy, Strategy


async def watch(updates):
    """Print progress as it arrives."""
    async for progress in updates:
        print(f"  {progress.completed}/{progress.total} {progress.state.value}: {progress.message}")


async def main():
    """Edit a clip, retrying once before falling back to partial assembly."""

    if not (os.getenv("FAL_KEY") or os.getenv("FAL_API_KEY")):
        print("Please set FAL_KEY environment variable")
        print("Get your key at: https://fal.ai/")
        return

    video_path = Path(sys.argv[1] if len(sys.argv) > 1 else "input.mp4")
    pipeline = FramePipeline.from_config()

    session = pipeline.start(
        video_path,
        prompt="turn the scene into a snowy winter evening",
        policy=SamplingPolicy(interval_frames=24, max_frames=8),
        strategy=Strategy.BROADCAST,
    )

    print("=== Restyling ===")
    watcher = asyncio.create_task(watch(session.progress.subscribe()))

    try:
        await pipeline.run(session)

        if RecoveryOption.RETRY_BATCH in session.recovery_options:
            print(f"\nRetrying frames {session.edited.missing()}...")
            await pipeline.retry_batch(session)

        if RecoveryOption.MANUAL_ASSEMBLY in session.recovery_options:
            print("\nAssembling the frames that did succeed...")
            await pipeline.assemble_available(session, compact=True)

        if RecoveryOption.MANUAL_REASSEMBLY in session.recovery_options:
            print("\nReassembling once more...")
            await pipeline.reassemble(session)

    finally:
        session.progress.close()
        await watcher
        await pipeline.close()

    print(f"\nStatus: {session.state.value}")
    if session.state == PipelineState.COMPLETE:
        output_path = Path("output") / "recovery_example.mp4"
        output_path.parent.mkdir(exist_ok=True)
        output_path.write_bytes(session.output_video)
        print(f"Saved: {output_path}")
    elif session.error:
        print(f"Error: {session.error}")


if __name__ == "__main__":
    asyncio.run(main())
