"""Encode/mux lifecycle.

    IDLE -> CONFIGURING -> ENCODING -> FLUSHING -> FINALIZED
                 \\             \\           \\
                  +-------------+-----------+--> ERRORED

Video and audio units arrive from different threads; each media type has
its own lock, and the state is guarded separately.
"""

import logging
import threading
from enum import Enum

import numpy as np

from reelforge.encoding.backend import EncoderBackend, FFmpegPipeBackend
from reelforge.errors import EncoderError, RenderCancelled
from reelforge.manifest import RenderSettings
from reelforge.models import AudioUnit, VideoUnit

logger = logging.getLogger(__name__)


class EncoderState(Enum):
    IDLE = "idle"
    CONFIGURING = "configuring"
    ENCODING = "encoding"
    FLUSHING = "flushing"
    FINALIZED = "finalized"
    ERRORED = "errored"


_TRANSITIONS = {
    EncoderState.IDLE: {EncoderState.CONFIGURING, EncoderState.ERRORED},
    EncoderState.CONFIGURING: {EncoderState.ENCODING, EncoderState.ERRORED},
    EncoderState.ENCODING: {EncoderState.FLUSHING, EncoderState.ERRORED},
    EncoderState.FLUSHING: {EncoderState.FINALIZED, EncoderState.ERRORED},
    EncoderState.FINALIZED: set(),
    EncoderState.ERRORED: set(),
}


class EncodeController:
    """Drives an EncoderBackend through one run."""

    def __init__(self, settings: RenderSettings, backend: EncoderBackend | None = None):
        self.settings = settings
        self.backend = backend if backend is not None else FFmpegPipeBackend()
        self.state = EncoderState.IDLE
        self.error: BaseException | None = None
        self.last_video_us = -1
        self.last_audio_us = -1
        self._aborted = False
        self._closed = False
        self._state_lock = threading.Lock()
        self._video_lock = threading.Lock()
        self._audio_lock = threading.Lock()

    def _transition(self, target: EncoderState) -> None:
        with self._state_lock:
            if target not in _TRANSITIONS[self.state]:
                raise EncoderError(f"Illegal encoder transition {self.state.value} -> {target.value}")
            logger.debug("Encoder %s -> %s", self.state.value, target.value)
            self.state = target

    def _fail(self, error: BaseException | None = None) -> None:
        with self._state_lock:
            if self.error is None and error is not None:
                self.error = error
            if self.state not in (EncoderState.FINALIZED, EncoderState.ERRORED):
                self.state = EncoderState.ERRORED

    def _require_encoding(self) -> None:
        if self._aborted:
            raise RenderCancelled("Encoder was aborted")
        if self.state != EncoderState.ENCODING:
            raise EncoderError(f"Cannot accept units while {self.state.value}")

    def open(self) -> None:
        self._transition(EncoderState.CONFIGURING)
        try:
            self.backend.open(self.settings)
        except EncoderError as e:
            self._fail(e)
            raise
        except OSError as e:
            error = EncoderError("Encoder configuration failed", cause=e)
            self._fail(error)
            raise error from e
        self._transition(EncoderState.ENCODING)

    def is_keyframe(self, timestamp_us: int) -> bool:
        slot = round(timestamp_us * self.settings.fps / 1_000_000)
        return slot % self.settings.keyframe_every == 0

    def submit_video(self, pixels: np.ndarray, timestamp_us: int) -> VideoUnit:
        """Hand one composited raster to the video encoder."""
        with self._video_lock:
            self._require_encoding()
            if timestamp_us < self.last_video_us:
                raise EncoderError(
                    f"Video timestamp went backwards: {timestamp_us} < {self.last_video_us}"
                )
            unit = VideoUnit(
                timestamp_us=timestamp_us,
                pixels=pixels,
                keyframe=self.is_keyframe(timestamp_us),
            )
            try:
                self.backend.encode_video(unit)
            except EncoderError as e:
                self._fail(e)
                raise
            self.last_video_us = timestamp_us
            return unit

    def submit_audio(self, unit: AudioUnit) -> None:
        with self._audio_lock:
            self._require_encoding()
            if unit.timestamp_us < self.last_audio_us:
                raise EncoderError(
                    f"Audio timestamp went backwards: {unit.timestamp_us} < {self.last_audio_us}"
                )
            try:
                self.backend.encode_audio(unit)
            except EncoderError as e:
                self._fail(e)
                raise
            self.last_audio_us = unit.timestamp_us

    def finalize(self, duration_us: int) -> bytes:
        """Flush both encoders up to *duration_us* and return the container bytes."""
        # Take both producer locks so no unit is mid-flight while flushing
        with self._video_lock, self._audio_lock:
            self._transition(EncoderState.FLUSHING)
            try:
                self.backend.flush(duration_us)
                data = self.backend.finalize()
            except EncoderError as e:
                self._fail(e)
                raise
            self._transition(EncoderState.FINALIZED)
        return data

    def abort(self) -> None:
        """Stop accepting units and discard everything encoded so far."""
        self._aborted = True
        with self._state_lock:
            if self.state == EncoderState.ENCODING:
                self.state = EncoderState.FLUSHING
        self.close()
        self._fail()

    @property
    def frame_count(self) -> int:
        return self.backend.frame_count

    @property
    def keyframe_count(self) -> int:
        return self.backend.keyframe_count

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.backend.close()
