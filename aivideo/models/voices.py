"""Prebuilt TTS voice table.

Voices are plain data: ``voice_id -> (gender, tone, description)``. The table
is parsed into ``Voice`` models once and cached.
"""

from functools import lru_cache
from typing import Optional

from aivideo.models.schemas import Voice

VOICE_TABLE: dict[str, tuple[str, str, str]] = {
    "Zephyr": ("female", "bright", "Bright, energetic female voice"),
    "Puck": ("male", "upbeat", "Upbeat, lively male voice"),
    "Leda": ("female", "youthful", "Youthful, light female voice"),
    "Aoede": ("female", "breezy", "Breezy, relaxed female voice"),
    "Kore": ("female", "firm", "Firm, clear female narrator"),
    "Orus": ("male", "firm", "Firm, steady male voice"),
    "Charon": ("male", "informative", "Informative, calm male narrator"),
    "Iapetus": ("male", "clear", "Clear, articulate male voice"),
    "Sulafat": ("female", "warm", "Warm, friendly female voice"),
    "Fenrir": ("male", "excitable", "Excitable, energetic male voice"),
    "Gacrux": ("female", "mature", "Mature, composed female voice"),
    "Enceladus": ("male", "breathy", "Breathy, soft male voice"),
    "Algenib": ("male", "gravelly", "Gravelly, textured male voice"),
    "Achernar": ("female", "soft", "Soft, gentle female voice"),
    "Achird": ("male", "friendly", "Friendly, approachable male voice"),
    "Algieba": ("male", "smooth", "Smooth, polished male voice"),
    "Alnilam": ("male", "firm", "Firm, confident male voice"),
    "Autonoe": ("female", "bright", "Bright, cheerful female voice"),
    "Callirrhoe": ("female", "easy-going", "Easy-going, casual female voice"),
    "Despina": ("female", "smooth", "Smooth, silky female voice"),
    "Erinome": ("female", "clear", "Clear, precise female voice"),
    "Laomedeia": ("female", "upbeat", "Upbeat, lively female voice"),
    "Pulcherrima": ("female", "forward", "Forward, expressive female voice"),
    "Rasalgethi": ("male", "informative", "Informative, measured male voice"),
    "Sadachbia": ("male", "lively", "Lively, animated male voice"),
    "Sadaltager": ("male", "knowledgeable", "Knowledgeable, authoritative male voice"),
    "Schedar": ("male", "even", "Even, balanced male voice"),
    "Umbriel": ("male", "easy-going", "Easy-going, relaxed male voice"),
    "Vindemiatrix": ("female", "gentle", "Gentle, calm female voice"),
    "Zubenelgenubi": ("male", "casual", "Casual, conversational male voice"),
}


@lru_cache(maxsize=1)
def load_voices() -> dict[str, Voice]:
    """Parse the voice table into models (cached)."""
    return {
        voice_id: Voice(voice_id=voice_id, gender=gender, tone=tone, description=description)
        for voice_id, (gender, tone, description) in VOICE_TABLE.items()
    }


def resolve_voice(voice_id: Optional[str], default: str = "Kore") -> Voice:
    """
    Look up a voice case-insensitively.

    Args:
        voice_id: Requested voice id (may be None or unknown)
        default: Voice used when the request is missing or unknown

    Returns:
        The matching Voice, or the default voice
    """
    voices = load_voices()
    if voice_id:
        for key, voice in voices.items():
            if key.lower() == voice_id.strip().lower():
                return voice
    return voices.get(default) or voices["Kore"]
