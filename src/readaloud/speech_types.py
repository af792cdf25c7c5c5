"""
Value types shared by the playback and recognition engines
"""
from enum import Enum


class Language(str, Enum):
    """Languages the reader ships command tables for"""
    ENGLISH = "en-US"
    TAMIL = "ta-IN"


class ReadingRate(float, Enum):
    """User reading-rate presets for the native voice path"""
    SLOW = 0.75
    NORMAL = 1.0
    FAST = 1.5

    def faster(self) -> "ReadingRate":
        if self is ReadingRate.SLOW:
            return ReadingRate.NORMAL
        return ReadingRate.FAST

    def slower(self) -> "ReadingRate":
        if self is ReadingRate.FAST:
            return ReadingRate.NORMAL
        return ReadingRate.SLOW

    @classmethod
    def nearest(cls, value: float) -> "ReadingRate":
        return min(cls, key=lambda rate: abs(rate.value - value))


def language_tag(language) -> str:
    """Accept a Language member or any BCP-47 string"""
    if isinstance(language, Language):
        return language.value
    return str(language)
