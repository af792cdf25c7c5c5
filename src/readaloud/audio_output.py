#!/usr/bin/env python3
"""
ReadAloud rendered-audio output.

Decodes externally rendered PCM16 clips into float buffers and plays them
through a lazily opened PortAudio output stream. The context mixes whichever
buffer source nodes are connected and started, and reports each node's
completion through its `on_ended` callback.
"""
import base64
import binascii
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

import numpy as np
try:
    import sounddevice as sd  # PortAudio bindings
except Exception:  # PortAudio library missing; rendered audio then falls back to the native voice
    sd = None  # type: ignore

from . import config as CFG
from .error_handler import AudioDecodeError, AudioOutputError
from .logging_utils import setup_logger

logger = setup_logger("readaloud.audio_output", "logs/audio_output.log")

DEFAULT_SAMPLE_RATE = 24000
BLOCK_SEC = 0.05  # 50ms blocks

STATE_SUSPENDED = "suspended"
STATE_RUNNING = "running"
STATE_CLOSED = "closed"


@dataclass
class AudioBuffer:
    """Mono float32 samples in [-1, 1] at a given sample rate"""
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)


def decode_base64_audio(data: str) -> bytes:
    """Decode base64 (optionally a data: URL) into raw bytes"""
    if "," in data and data.lstrip().startswith("data:"):
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioDecodeError(f"Invalid base64 audio payload: {e}", component="audio_output", operation="decode") from e


def decode_audio_data(data: Union[bytes, bytearray, str], sample_rate: int = DEFAULT_SAMPLE_RATE, num_channels: int = 1) -> AudioBuffer:
    """Decode little-endian PCM16 into a mono AudioBuffer.

    Multi-channel input is interleaved; channels are averaged down to mono.
    """
    if isinstance(data, str):
        data = decode_base64_audio(data)
    if num_channels < 1:
        raise AudioDecodeError("num_channels must be at least 1", component="audio_output", operation="decode")
    if sample_rate <= 0:
        raise AudioDecodeError("sample_rate must be positive", component="audio_output", operation="decode")
    if not data:
        raise AudioDecodeError("Rendered audio is empty", component="audio_output", operation="decode")
    if len(data) % 2:
        raise AudioDecodeError(
            f"PCM16 payload has odd length {len(data)}",
            component="audio_output",
            operation="decode",
        )

    pcm = np.frombuffer(bytes(data), dtype="<i2")
    frame_count = len(pcm) // num_channels
    if frame_count == 0:
        raise AudioDecodeError("Rendered audio has no complete frames", component="audio_output", operation="decode")

    frames = pcm[:frame_count * num_channels].reshape(frame_count, num_channels)
    samples = (frames.astype(np.float32) / 32768.0).mean(axis=1).astype(np.float32)
    return AudioBuffer(samples=samples, sample_rate=sample_rate)


def resample(audio: np.ndarray, src_sr: int, dst_sr: int) -> np.ndarray:
    """Linear-interpolation resample; identity when the rates match"""
    if src_sr == dst_sr or len(audio) == 0:
        return audio.astype(np.float32)
    x = np.arange(len(audio), dtype=np.float32)
    new_len = max(1, int(len(audio) * (dst_sr / float(src_sr))))
    new_x = np.linspace(0, max(1, len(audio) - 1), new_len)
    return np.interp(new_x, x, audio.astype(np.float32)).astype(np.float32)


class BufferSourceNode:
    """One-shot playback of an AudioBuffer through an AudioOutputContext"""

    def __init__(self, context: "AudioOutputContext", buffer: AudioBuffer):
        self.context = context
        self.buffer = buffer
        self.on_ended: Optional[Callable[[], None]] = None
        self._samples = resample(buffer.samples, buffer.sample_rate, context.sample_rate)
        self._position = 0
        self._connected = False
        self._started = False
        self._finished = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def started(self) -> bool:
        return self._started

    @property
    def finished(self) -> bool:
        return self._finished

    def connect(self) -> None:
        self.context._attach(self)

    def disconnect(self) -> None:
        self.context._detach(self)

    def start(self) -> None:
        if self._started:
            raise AudioOutputError("Buffer source already started", component="audio_output", operation="start")
        self._started = True
        logger.debug(f"Buffer source started ({len(self._samples)} samples)")

    def stop(self) -> None:
        if not self._started:
            raise AudioOutputError("Buffer source was never started", component="audio_output", operation="stop")
        self.context._finish(self)

    def _render(self, frames: int) -> np.ndarray:
        chunk = self._samples[self._position:self._position + frames]
        self._position += len(chunk)
        return chunk

    @property
    def _exhausted(self) -> bool:
        return self._position >= len(self._samples)


class AudioOutputContext:
    """Mixes started buffer sources into a single PortAudio output stream"""

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE, output_device=None):
        self.sample_rate = sample_rate
        self.output_device = output_device  # sd device index or name
        self.state = STATE_SUSPENDED
        self._stream = None
        self._sources: List[BufferSourceNode] = []
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self.state == STATE_CLOSED

    def create_buffer_source(self, buffer: AudioBuffer) -> BufferSourceNode:
        if self.closed:
            raise AudioOutputError("Audio context is closed", component="audio_output", operation="create_source")
        return BufferSourceNode(self, buffer)

    def resume(self) -> None:
        """Open the output stream if needed and start pulling audio"""
        if self.closed:
            raise AudioOutputError("Audio context is closed", component="audio_output", operation="resume")
        if self.state == STATE_RUNNING:
            return
        if self._stream is None:
            self._stream = self._open_stream()
        try:
            self._stream.start()
        except Exception as e:
            raise AudioOutputError(f"Failed to start output stream: {e}", component="audio_output", operation="resume") from e
        self.state = STATE_RUNNING
        logger.debug("Audio context running")

    def suspend(self) -> None:
        if self.state != STATE_RUNNING:
            return
        try:
            self._stream.stop()
        except Exception as e:
            logger.error(f"Error suspending audio stream: {e}")
        self.state = STATE_SUSPENDED
        logger.debug("Audio context suspended")

    def close(self) -> None:
        if self.closed:
            return
        with self._lock:
            self._sources.clear()
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.error(f"Error closing audio stream: {e}")
            finally:
                self._stream = None
        self.state = STATE_CLOSED
        logger.info("Audio context closed")

    def get_status(self) -> dict:
        with self._lock:
            active = sum(1 for s in self._sources if s.started and not s.finished)
            connected = len(self._sources)
        return {
            'state': self.state,
            'sample_rate': self.sample_rate,
            'connected_sources': connected,
            'active_sources': active,
        }

    def _open_stream(self):
        if CFG.audio_disabled():
            raise AudioOutputError("READALOUD_NO_AUDIO=1 set; audio output disabled", component="audio_output", operation="open")
        if sd is None:
            raise AudioOutputError("sounddevice not available", component="audio_output", operation="open")
        try:
            return sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=int(self.sample_rate * BLOCK_SEC),
                callback=self._audio_callback,
                device=self.output_device,
            )
        except Exception as e:
            raise AudioOutputError(f"Failed to open output stream: {e}", component="audio_output", operation="open") from e

    def _attach(self, source: BufferSourceNode) -> None:
        with self._lock:
            if source not in self._sources:
                self._sources.append(source)
            source._connected = True

    def _detach(self, source: BufferSourceNode) -> None:
        with self._lock:
            if source in self._sources:
                self._sources.remove(source)
            source._connected = False

    def _finish(self, source: BufferSourceNode) -> None:
        with self._lock:
            if source._finished:
                return
            source._finished = True
        self._fire_ended(source)

    def _audio_callback(self, outdata: np.ndarray, frames: int, time_info, status) -> None:
        """PortAudio callback: mix every connected, started source"""
        if status:
            logger.debug(f"Output stream status: {status}")

        mix = np.zeros(frames, dtype=np.float32)
        ended: List[BufferSourceNode] = []
        with self._lock:
            for source in self._sources:
                if not source._started or source._finished:
                    continue
                chunk = source._render(frames)
                mix[:len(chunk)] += chunk
                if source._exhausted:
                    source._finished = True
                    ended.append(source)

        outdata[:] = np.clip(mix, -1.0, 1.0).reshape(-1, 1)

        for source in ended:
            self._fire_ended(source)

    def _fire_ended(self, source: BufferSourceNode) -> None:
        callback = source.on_ended
        if callback is None:
            return
        # Never run session logic on the PortAudio thread
        threading.Thread(target=self._run_ended, args=(callback,), daemon=True).start()

    @staticmethod
    def _run_ended(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.error(f"on_ended callback error: {e}")
