import io
import wave

import numpy as np


def create_test_audio(duration=1.0, sample_rate=16000):
    """Return WAV bytes holding a simple sine wave."""
    t = np.linspace(0, duration, int(sample_rate * duration))
    frequency = 440  # A4 note
    amplitude = 0.5
    samples = amplitude * np.sin(2 * np.pi * frequency * t)

    # Convert to 16-bit PCM
    samples = (samples * 32767).astype(np.int16)

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(sample_rate)
        wf.writeframes(samples.tobytes())
    return buffer.getvalue()


def create_mp3_payload(size):
    """Bytes that look like an MP3 stream (frame sync header) padded to ``size``."""
    header = b"\xff\xfb\x90\x64"
    return header + b"\x00" * (size - len(header))
