"""Orchestrator: runs one render: plan, composite, retime, encode, mux."""

import concurrent.futures
import logging
import math
import subprocess
import threading
from pathlib import Path
from typing import Callable

from PIL import Image

from reelforge import ffutil
from reelforge.compositing.compositor import FrameCompositor
from reelforge.compositing.layers import load_overlay
from reelforge.encoding.backend import EncoderBackend, FFmpegPipeBackend
from reelforge.encoding.controller import EncodeController
from reelforge.errors import ConfigError, InvalidSourceError, RenderError
from reelforge.manifest import RenderSettings, TransformConfig
from reelforge.models import EncodedContainer, Segment
from reelforge.progress import ProgressTracker, ResourceStack
from reelforge.retimer import AudioRetimer, GainStage
from reelforge.source import FFmpegMediaSource, MediaSource
from reelforge.timeline import OutputClock, TimelinePlan, plan_timeline

logger = logging.getLogger(__name__)


def _open_source(path: Path, config: TransformConfig, settings: RenderSettings) -> FFmpegMediaSource:
    ffutil.check_ffmpeg()
    try:
        return FFmpegMediaSource(
            path,
            fps=settings.fps,
            sample_rate=settings.sample_rate,
            channels=settings.channels,
            speed=config.speed,
        )
    except subprocess.CalledProcessError as e:
        raise InvalidSourceError(f"Cannot probe {path}") from e
    except (ValueError, KeyError) as e:
        raise InvalidSourceError(f"Unusable source {path}: {e}") from e


def _pump_video(
    media: MediaSource,
    compositor: FrameCompositor,
    controller: EncodeController,
    clock: OutputClock,
    segment: Segment,
    tracker: ProgressTracker,
    halt: threading.Event,
) -> int:
    """Composite and encode the frames of one segment; returns the frame count."""
    frames = 0
    while not halt.is_set():
        tracker.check_cancelled()
        frame = media.next_video_frame()
        if frame is None or frame.timestamp >= segment.end:
            return frames
        if frame.timestamp < segment.start:
            continue
        raster = compositor.compose(frame.pixels)
        controller.submit_video(raster, clock.to_output(frame.timestamp, segment))
        tracker.update(frame.timestamp)
        frames += 1
    return frames


def _pump_audio(
    media: MediaSource,
    controller: EncodeController,
    retimer: AudioRetimer,
    gain: GainStage,
    tracker: ProgressTracker,
    halt: threading.Event,
) -> int:
    """Retime and encode the audio of one segment; returns the buffer count."""
    buffers = 0
    while not halt.is_set():
        tracker.check_cancelled()
        buffer = media.next_audio_buffer()
        if buffer is None:
            break
        unit = retimer.retime(gain.apply(buffer))
        if unit is None:
            break
        controller.submit_audio(unit)
        buffers += 1
    return buffers


def _run_segments(
    plan: TimelinePlan,
    media: MediaSource,
    compositor: FrameCompositor,
    controller: EncodeController,
    clock: OutputClock,
    gain: GainStage,
    tracker: ProgressTracker,
) -> None:
    halt = threading.Event()

    def stop_on_audio_failure(job: concurrent.futures.Future) -> None:
        if not job.cancelled() and job.exception() is not None:
            halt.set()

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="reelforge-audio"
    ) as pool:
        for index, segment in enumerate(plan.segments):
            tracker.check_cancelled()
            tracker.begin_segment(index, segment)
            media.seek(segment.start)

            audio_job = pool.submit(
                _pump_audio, media, controller, AudioRetimer(clock, segment), gain, tracker, halt,
            )
            audio_job.add_done_callback(stop_on_audio_failure)
            try:
                frames = _pump_video(media, compositor, controller, clock, segment, tracker, halt)
            except BaseException as e:
                halt.set()
                concurrent.futures.wait([audio_job])
                # report the failure that errored the controller, not the refusal after it
                first = controller.error
                if isinstance(first, RenderError) and first is not e:
                    raise first from e
                raise
            buffers = audio_job.result()

            clock.advance(segment)
            logger.debug(
                "Segment %d/%d [%.3f, %.3f): %d frames, %d audio buffers, clock at %dus",
                index + 1, len(plan.segments), segment.start, segment.end,
                frames, buffers, clock.timestamp_us,
            )


def render(
    source: str | Path | MediaSource,
    overlay: str | Path | Image.Image | None = None,
    config: TransformConfig | None = None,
    on_progress: Callable[[float], None] | None = None,
    settings: RenderSettings | None = None,
    cancel_event: threading.Event | None = None,
    backend: EncoderBackend | None = None,
    seed: int | None = None,
) -> EncodedContainer:
    """Render *source* through the configured transforms into one MP4.

    Args:
        source: Path to a media file, or an already-open MediaSource. An
            open source must already decode at ``config.speed``. Either way
            the source is closed when the run ends.
        overlay: Optional cover image (path or PIL image).
        config: Transform settings for this run.
        on_progress: Optional callback(percent); percentages are
            non-decreasing, below 100 until the container is finished, then 100.
        settings: Output geometry and codec parameters.
        cancel_event: Set it from any thread to abort the run.
        backend: Encoder backend; defaults to piped ffmpeg encoders.
        seed: Seeds the film-grain pattern and offsets for reproducible output.

    Raises:
        RenderError: a subclass naming what went wrong (see reelforge.errors).
    """
    config = config or TransformConfig()
    settings = settings or RenderSettings()

    with ResourceStack() as resources:
        if isinstance(source, (str, Path)):
            media = _open_source(Path(source), config, settings)
        else:
            media = source
        resources.push("media source", media.close)
        if not math.isclose(media.speed, config.speed):
            raise ConfigError(
                f"Source decodes at speed {media.speed}, config asks for {config.speed}"
            )

        plan = plan_timeline(
            media.duration,
            config.trim_start,
            config.trim_end,
            config.shuffle_segments,
            chunk=settings.shuffle_chunk,
            margin=settings.end_margin,
            min_duration=settings.min_duration,
        )
        logger.info(
            "Rendering [%.2f, %.2f) of %.2fs source in %d segment(s)%s",
            plan.trim_start, plan.effective_end, plan.duration, len(plan.segments),
            " (shuffled)" if config.shuffle_segments else "",
        )

        overlay_image = load_overlay(overlay) if overlay is not None else None
        compositor = FrameCompositor(
            config, settings, (media.width, media.height), overlay_image, seed=seed
        )

        if backend is None:
            ffutil.check_encoders(settings.video_codec, settings.audio_codec)
            backend = FFmpegPipeBackend()
        controller = EncodeController(settings, backend)
        resources.push("encoder", controller.close)

        tracker = ProgressTracker(len(plan.segments), on_progress, cancel_event)
        clock = OutputClock(config.speed)

        try:
            controller.open()
            _run_segments(plan, media, compositor, controller, clock, GainStage(config.volume), tracker)
            tracker.check_cancelled()
            data = controller.finalize(clock.timestamp_us)
        except RenderError as e:
            logger.warning("Render failed (%s): %s", e.category, e)
            controller.abort()
            raise
        except BaseException:
            controller.abort()
            raise

    tracker.complete()
    return EncodedContainer(
        data=data,
        width=settings.width,
        height=settings.height,
        fps=settings.fps,
        duration=clock.timestamp_us / 1_000_000,
        frame_count=controller.frame_count,
        keyframe_count=controller.keyframe_count,
        segments=list(plan.segments),
    )
