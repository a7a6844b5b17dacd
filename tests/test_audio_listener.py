from __future__ import annotations

import asyncio
import unittest
from datetime import datetime
from unittest.mock import patch

import numpy as np

try:
    import sounddevice as sd

    from audio_listener import MicrophoneListener
except (ImportError, OSError):  # PortAudio may be missing on CI hosts
    sd = None


@unittest.skipIf(sd is None, "sounddevice/PortAudio unavailable")
class MicrophoneListenerTests(unittest.TestCase):
    def test_full_queue_drops_oldest_frame(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            queue: asyncio.Queue = asyncio.Queue(maxsize=2)
            listener = MicrophoneListener(loop=loop, output_queue=queue, sample_rate=100)
            listener._running = True
            for value in (1.0, 2.0, 3.0):
                listener._publish_frame(np.full(4, value, dtype=np.float32), datetime.now())

            self.assertEqual(queue.qsize(), 2)
            first = queue.get_nowait()
            second = queue.get_nowait()
            self.assertEqual(first.samples[0], 2.0)
            self.assertEqual(second.samples[0], 3.0)
            self.assertEqual(first.sample_rate, 100)
        finally:
            loop.close()

    def test_frames_are_ignored_when_stopped(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            queue: asyncio.Queue = asyncio.Queue(maxsize=2)
            listener = MicrophoneListener(loop=loop, output_queue=queue)
            listener._publish_frame(np.zeros(4, dtype=np.float32), datetime.now())
            self.assertTrue(queue.empty())
        finally:
            loop.close()

    def test_input_device_lookup(self) -> None:
        devices = [
            {"name": "Speakers", "max_input_channels": 0},
            {"name": "USB Microphone", "max_input_channels": 1},
        ]
        loop = asyncio.new_event_loop()
        try:
            with patch.object(sd, "query_devices", return_value=devices):
                self.assertEqual(MicrophoneListener.list_input_devices(), ["USB Microphone"])
                preferred = MicrophoneListener(loop=loop, output_queue=asyncio.Queue(), preferred_device="usb")
                self.assertTrue(preferred.has_input_device())
                self.assertEqual(preferred._resolve_input_device(), "USB Microphone")
                missing = MicrophoneListener(loop=loop, output_queue=asyncio.Queue(), preferred_device="webcam")
                self.assertFalse(missing.has_input_device())
                with self.assertRaises(RuntimeError):
                    missing._resolve_input_device()
        finally:
            loop.close()

    def test_portaudio_failure_means_no_device(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            listener = MicrophoneListener(loop=loop, output_queue=asyncio.Queue())
            with patch.object(sd, "query_devices", side_effect=sd.PortAudioError("no host api")):
                self.assertFalse(listener.has_input_device())
        finally:
            loop.close()


if __name__ == "__main__":
    unittest.main()
