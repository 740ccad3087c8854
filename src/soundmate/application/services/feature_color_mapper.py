"""Feature-to-color mapping and mood tagging.

Pure functions, no I/O. The same feature vector always yields the same color,
which is what lets a cell's color be recomputed from scratch at any time.

Color model:
    hue        tiered by energy
                 energy > 0.7        -> tempo * 30            (red/orange, 0-30)
                 0.3 < energy <= 0.7 -> 60 + danceability*120 (yellow/green, 60-180)
                 energy <= 0.3       -> 240 + acousticness*60 (blue/violet, 240-300)
    saturation 30 + valence * 60                             (30-90)
    value      40 + (danceability*0.7 + popularity*0.3) * 40 (40-80)
"""

import math
from collections.abc import Mapping
from typing import Any, NamedTuple

from soundmate.domain.value_objects import AudioFeatures

DEFAULT_FEATURE_VALUE = 0.5

LOUDNESS_MIN_DB = -60.0
LOUDNESS_MAX_DB = 0.0
TEMPO_MIN_BPM = 60.0
TEMPO_MAX_BPM = 200.0


class HSV(NamedTuple):
    h: int
    s: int
    v: int


FeatureInput = AudioFeatures | Mapping[str, Any]


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    # Builtin round() is banker's rounding; colors must round .5 up.
    return math.floor(value + 0.5)


def _raw(features: FeatureInput, name: str) -> Any:
    if isinstance(features, AudioFeatures):
        return getattr(features, name)
    return features.get(name)


def _unit_value(features: FeatureInput, name: str) -> float:
    """Feature clamped to [0,1]; missing or non-finite values become 0.5."""
    raw = _raw(features, name)
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return DEFAULT_FEATURE_VALUE
    if not math.isfinite(raw):
        return DEFAULT_FEATURE_VALUE
    return _clamp(float(raw))


def _comparable(features: FeatureInput, name: str) -> float | None:
    raw = _raw(features, name)
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return None
    if not math.isfinite(raw):
        return None
    return float(raw)


def normalize_loudness(loudness_db: float) -> float:
    """Map -60..0 dB onto 0..1."""
    return _clamp((loudness_db - LOUDNESS_MIN_DB) / (LOUDNESS_MAX_DB - LOUDNESS_MIN_DB))


def normalize_tempo(tempo_bpm: float) -> float:
    """Map 60..200 BPM onto 0..1."""
    return _clamp((tempo_bpm - TEMPO_MIN_BPM) / (TEMPO_MAX_BPM - TEMPO_MIN_BPM))


def features_to_hsv(features: FeatureInput) -> HSV:
    """Convert a feature vector into an HSV triple. Never raises."""
    energy = _unit_value(features, "energy")
    valence = _unit_value(features, "valence")
    danceability = _unit_value(features, "danceability")
    acousticness = _unit_value(features, "acousticness")
    tempo = _unit_value(features, "tempo")
    popularity = _unit_value(features, "popularity")

    if energy > 0.7:
        hue = tempo * 30
    elif energy > 0.3:
        hue = 60 + danceability * 120
    else:
        hue = 240 + acousticness * 60

    saturation = 30 + valence * 60
    value = 40 + (danceability * 0.7 + popularity * 0.3) * 40

    return HSV(
        h=_round_half_up(hue) % 360,
        s=_round_half_up(_clamp(saturation, 0, 100)),
        v=_round_half_up(_clamp(value, 0, 100)),
    )


def hsv_to_hex(h: float, s: float, v: float) -> str:
    """Convert HSV (h in degrees, s/v in percent) to a lowercase ``#rrggbb`` string."""
    h = h % 360
    s = _clamp(s / 100)
    v = _clamp(v / 100)

    c = v * s
    x = c * (1 - abs((h / 60) % 2 - 1))
    m = v - c

    if h < 60:
        r, g, b = c, x, 0.0
    elif h < 120:
        r, g, b = x, c, 0.0
    elif h < 180:
        r, g, b = 0.0, c, x
    elif h < 240:
        r, g, b = 0.0, x, c
    elif h < 300:
        r, g, b = x, 0.0, c
    else:
        r, g, b = c, 0.0, x

    channels = (_round_half_up((channel + m) * 255) for channel in (r, g, b))
    return "#" + "".join(f"{channel:02x}" for channel in channels)


def features_to_color(features: FeatureInput) -> str:
    """Feature vector straight to hex color."""
    hsv = features_to_hsv(features)
    return hsv_to_hex(hsv.h, hsv.s, hsv.v)


# Hey future me, each single-dimension block is an if/elif chain, so a dimension emits at most
# ONE tag ("High Energy" wins over "Energetic"). Missing dimensions emit nothing for that block,
# the compound tags only fire when both inputs are known. Order of the output is stable
# (energy, valence, danceability, acousticness, compounds) - the UI shows tags in that order.
def generate_mood_tags(features: FeatureInput) -> list[str]:
    """Derive discrete mood tags from thresholded feature values."""
    energy = _comparable(features, "energy")
    valence = _comparable(features, "valence")
    danceability = _comparable(features, "danceability")
    acousticness = _comparable(features, "acousticness")

    tags: list[str] = []

    if energy is not None:
        if energy > 0.8:
            tags.append("High Energy")
        elif energy > 0.6:
            tags.append("Energetic")
        elif energy < 0.3:
            tags.append("Chill")
        elif energy < 0.4:
            tags.append("Mellow")

    if valence is not None:
        if valence > 0.75:
            tags.append("Happy")
        elif valence > 0.55:
            tags.append("Upbeat")
        elif valence < 0.35:
            tags.append("Sad")
        elif valence < 0.45:
            tags.append("Melancholic")

    if danceability is not None:
        if danceability > 0.8:
            tags.append("Danceable")
        elif danceability > 0.6:
            tags.append("Groovy")

    if acousticness is not None:
        if acousticness > 0.7:
            tags.append("Acoustic")
        elif acousticness < 0.2:
            tags.append("Electronic")

    if energy is not None and valence is not None:
        if energy > 0.7 and valence > 0.7:
            tags.append("Euphoric")
        if energy < 0.4 and valence < 0.4:
            tags.append("Contemplative")
    if danceability is not None and energy is not None:
        if danceability > 0.7 and energy > 0.6:
            tags.append("Party")

    return list(dict.fromkeys(tags))
