from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np
import sounddevice as sd

from config_utils import read_float_env


@dataclass
class AudioFrame:
    captured_at: datetime
    sample_rate: int
    samples: np.ndarray


class MicrophoneListener:
    """Captures mono float32 frames from an input device into an asyncio queue.

    The PortAudio callback runs on its own thread; frames are handed to the event loop
    with `call_soon_threadsafe` and the oldest frame is dropped when the queue is full.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        output_queue: asyncio.Queue[AudioFrame],
        sample_rate: int = 16000,
        channels: int = 1,
        preferred_device: Optional[str] = None,
    ) -> None:
        self._loop = loop
        self._output_queue = output_queue
        self._sample_rate = sample_rate
        self._channels = channels
        self._preferred_device = preferred_device
        self._block_seconds = read_float_env("AUDIO_BLOCK_SECONDS", 0.1)
        self._stream: Optional[sd.InputStream] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @staticmethod
    def list_input_devices() -> list[str]:
        devices = sd.query_devices()
        names: list[str] = []
        for d in devices:
            if int(d.get("max_input_channels", 0)) > 0:
                names.append(str(d.get("name", "Unknown input device")))
        return names

    def has_input_device(self) -> bool:
        try:
            names = self.list_input_devices()
        except sd.PortAudioError:
            return False
        if not self._preferred_device:
            return bool(names)
        lowered_target = self._preferred_device.lower()
        return any(lowered_target in name.lower() for name in names)

    def start(self) -> None:
        if self._running:
            return
        self._stream = sd.InputStream(
            samplerate=self._sample_rate,
            channels=self._channels,
            dtype="float32",
            callback=self._audio_callback,
            device=self._resolve_input_device(),
            blocksize=max(1, int(self._sample_rate * self._block_seconds)),
        )
        self._stream.start()
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        del frames, time_info, status
        if not self._running:
            return
        mono = np.copy(indata[:, 0])
        self._loop.call_soon_threadsafe(self._publish_frame, mono, datetime.now())

    def _publish_frame(self, samples: np.ndarray, captured_at: datetime) -> None:
        if not self._running:
            return
        frame = AudioFrame(captured_at=captured_at, sample_rate=self._sample_rate, samples=samples)
        try:
            self._output_queue.put_nowait(frame)
        except asyncio.QueueFull:
            try:
                self._output_queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._output_queue.put_nowait(frame)

    def _resolve_input_device(self) -> Optional[str]:
        if not self._preferred_device:
            return None
        lowered_target = self._preferred_device.lower()
        for name in self.list_input_devices():
            if lowered_target in name.lower():
                return name
        raise RuntimeError(f"AUDIO_INPUT_DEVICE '{self._preferred_device}' was not found among input devices.")
