"""Audio container sniffing and PCM16 WAV wrapping.

Speech-to-text backends want a self-describing file. Audio that already
arrives in a container is passed through untouched; raw PCM16 is given
a minimal 44-byte RIFF/WAVE header.
"""

from __future__ import annotations

import struct

from voxline.errors import FormatError

WAV_HEADER_SIZE = 44

# container name -> file extension the backends expect
CONTAINER_EXTENSIONS: dict[str, str] = {
    "wav": "wav",
    "webm": "webm",
    "ogg": "ogg",
    "mp3": "mp3",
    "flac": "flac",
    "mp4": "m4a",
}


def detect_container(data: bytes) -> str | None:
    """Identify an encoded audio container from its magic bytes.

    Returns the container name, or None when the bytes look like raw PCM.

    Raises:
        FormatError: If the data starts like a RIFF file but is not WAVE.
    """
    if len(data) >= 4 and data[:4] == b"RIFF":
        if len(data) < 12 or data[8:12] != b"WAVE":
            raise FormatError("RIFF data is not a WAVE file or the header is truncated")
        return "wav"
    if data[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    if data[:4] == b"OggS":
        return "ogg"
    if data[:4] == b"fLaC":
        return "flac"
    # bare MPEG frame sync is two bytes and shows up in ordinary PCM16 samples
    if data[:3] == b"ID3":
        return "mp3"
    if len(data) >= 8 and data[4:8] == b"ftyp":
        return "mp4"
    return None


def wav_header(data_length: int, sample_rate: int = 16000, channels: int = 1,
               bits_per_sample: int = 16) -> bytes:
    """Build a canonical 44-byte PCM WAV header."""
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # PCM
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_length,
    )


def wrap_pcm16_wav(pcm: bytes, sample_rate: int = 16000) -> bytes:
    """Wrap mono little-endian PCM16 samples in a WAV container.

    Raises:
        FormatError: If the byte count is not a whole number of samples.
    """
    if len(pcm) % 2:
        raise FormatError(f"PCM16 payload has odd length {len(pcm)}")
    return wav_header(len(pcm), sample_rate) + pcm


def as_container(audio: bytes, sample_rate: int = 16000) -> tuple[bytes, str]:
    """Return ``(payload, container)`` ready to upload to a backend."""
    container = detect_container(audio)
    if container is None:
        return wrap_pcm16_wav(audio, sample_rate), "wav"
    return audio, container
