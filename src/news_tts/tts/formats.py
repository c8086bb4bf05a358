"""Audio output formats and their ffmpeg/provider mappings."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class AudioFormat:
    name: str
    extension: str
    content_type: str
    codec: str          # ffmpeg -c:a
    muxer: str          # ffmpeg -f
    provider_format: str


FORMATS: Dict[str, AudioFormat] = {
    "mp3": AudioFormat("mp3", "mp3", "audio/mpeg", "libmp3lame", "mp3", "mp3_44100_128"),
    "m4a": AudioFormat("m4a", "m4a", "audio/mp4", "aac", "ipod", "mp3_44100_128"),
    "aac": AudioFormat("aac", "aac", "audio/aac", "aac", "adts", "mp3_44100_128"),
}


def get_format(name: str) -> AudioFormat:
    """Look up a format by name (case-insensitive)."""
    try:
        return FORMATS[name.lower()]
    except KeyError:
        raise ValueError(f"unsupported audio format: {name!r} (expected one of {', '.join(FORMATS)})") from None
