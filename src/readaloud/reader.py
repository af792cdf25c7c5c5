#!/usr/bin/env python3
"""
Assistive document reader.

`AssistiveReader` keeps the current document (plus optional translations and
pre-rendered audio per language) and exposes the viewer's voice actions.
`build_default_registry` wires those actions to the English and Tamil command
phrases; phrases whose action is not available in the host are skipped.
"""
from typing import Callable, Dict, List, Optional, Tuple

from .audio_session import RenderedAudio
from .commands import CommandRegistry, VoiceCommandController
from .logging_utils import setup_logger
from .speech_types import Language, ReadingRate, language_tag

logger = setup_logger("readaloud.reader", "logs/reader.log")

MISSING_TRANSLATION = "The {name} translation is not available yet."
NO_DOCUMENT = "There is no document to read."

_LANGUAGE_NAMES = {Language.ENGLISH.value: "English", Language.TAMIL.value: "Tamil"}

# key -> (keywords, feedback) per language
COMMAND_PHRASES: Dict[str, List[Tuple[str, Tuple[str, ...], str]]] = {
    Language.ENGLISH.value: [
        ("main_gallery", ("gallery", "open gallery"), "Opening gallery"),
        ("main_camera", ("camera", "open camera"), "Opening camera"),
        ("main_pdf", ("pdf", "open pdf"), "Opening PDF selector"),
        ("viewer_describe_image", ("describe image", "what is this", "analyze picture"), "Analyzing the image"),
        ("viewer_read_ta", ("read tamil",), "Reading in Tamil"),
        ("viewer_pause", ("pause",), "Pausing"),
        ("viewer_resume", ("resume", "continue", "play"), "Resuming"),
        ("viewer_stop", ("stop",), "Stopping"),
        ("viewer_back", ("back", "go back"), "Going back"),
        ("viewer_mag_increase", ("increase magnification", "zoom in"), "Zooming in"),
        ("viewer_mag_decrease", ("decrease magnification", "zoom out"), "Zooming out"),
        ("viewer_rate_increase", ("read faster", "increase speed"), "Increasing speed"),
        ("viewer_rate_decrease", ("read slower", "decrease speed"), "Decreasing speed"),
        # must follow every other "read ..." phrase
        ("viewer_read_en", ("read", "read english"), "Reading in English"),
        ("settings_close", ("close settings", "exit settings"), "Closing settings"),
        ("settings_voice_on", ("turn on voice", "enable voice"), "Voice commands enabled"),
        ("settings_voice_off", ("turn off voice", "disable voice"), ""),
        ("settings_feedback_on", ("turn on feedback", "enable feedback"), "Voice feedback enabled"),
        ("settings_feedback_off", ("turn off feedback", "disable feedback"), "Voice feedback disabled"),
        ("settings_lang_en", ("switch to english", "use english"), "Language set to English"),
        ("settings_lang_ta", ("switch to tamil", "use tamil"), "Language set to Tamil"),
        ("settings_rate_slow", ("slow rate", "slow reading"), "Reading rate set to slow"),
        ("settings_rate_normal", ("normal rate", "normal reading"), "Reading rate set to normal"),
        ("settings_rate_fast", ("fast rate", "fast reading"), "Reading rate set to fast"),
        ("common_settings", ("settings", "open settings", "application settings"), "Opening settings"),
        ("common_ask_ai", ("ask ai", "hey assistant", "ask a question"), "How can I help you?"),
        ("common_contrast_light", ("light mode", "white mode"), "Light mode activated"),
        ("common_contrast_dark", ("dark mode", "black mode"), "Dark mode activated"),
        ("common_contrast_yellow", ("yellow mode",), "Yellow on black mode activated"),
        ("common_contrast_blue", ("blue mode",), "Blue on black mode activated"),
    ],
    Language.TAMIL.value: [
        ("main_gallery", ("கேலரி",), "கேலரி திறக்கப்படுகிறது"),
        ("main_camera", ("கேமரா",), "கேமரா திறக்கப்படுகிறது"),
        ("main_pdf", ("பிடிஎஃப்",), "PDF திறக்கப்படுகிறது"),
        ("viewer_describe_image", ("படத்தை விவரி", "இது என்ன"), "படம் பகுப்பாய்வு செய்யப்படுகிறது"),
        ("viewer_read_en", ("ஆங்கிலத்தில் படி",), "ஆங்கிலத்தில் படிக்கிறது"),
        ("viewer_read_ta", ("தமிழில் படி",), "தமிழில் படிக்கிறது"),
        ("viewer_pause", ("இடைநிறுத்தம்",), "இடைநிறுத்தப்படுகிறது"),
        ("viewer_resume", ("தொடரவும்", "மீண்டும் இயக்கு"), "மீண்டும் தொடங்குகிறது"),
        ("viewer_stop", ("நிறுத்து",), "நிறுத்தப்படுகிறது"),
        ("viewer_back", ("பின்னால்", "திரும்பிச் செல்"), "பின்னால் செல்கிறது"),
        ("viewer_mag_increase", ("உருப்பெருக்கத்தை அதிகரி", "பெரிதாக்கு"), "பெரிதாக்குகிறது"),
        ("viewer_mag_decrease", ("உருப்பெருக்கத்தைக் குறை", "சிறிதாக்கு"), "சிறிதாக்குகிறது"),
        ("viewer_rate_increase", ("வேகமாகப் படி",), "வேகம் அதிகரிக்கிறது"),
        ("viewer_rate_decrease", ("மெதுவாகப் படி",), "வேகம் குறைகிறது"),
        ("settings_close", ("அமைப்புகளை மூடு", "மூடு"), "அமைப்புகள் மூடப்படுகிறது"),
        ("settings_voice_on", ("குரல் கட்டளைகளை இயக்கு",), "குரல் கட்டளைகள் இயக்கப்பட்டது"),
        ("settings_voice_off", ("குரல் கட்டளைகளை முடக்கு",), ""),
        ("settings_feedback_on", ("பின்னூட்டத்தை இயக்கு",), "குரல் பின்னூட்டம் இயக்கப்பட்டது"),
        ("settings_feedback_off", ("பின்னூட்டத்தை முடக்கு",), "குரல் பின்னூட்டம் முடக்கப்பட்டது"),
        ("settings_lang_en", ("ஆங்கிலத்திற்கு மாற்று",), "மொழி ஆங்கிலத்திற்கு மாற்றப்பட்டது"),
        ("settings_lang_ta", ("தமிழுக்கு மாற்று",), "மொழி தமிழுக்கு மாற்றப்பட்டது"),
        ("settings_rate_slow", ("மெதுவான வேகம்",), "வாசிப்பு வேகம் மெதுவாக அமைக்கப்பட்டது"),
        ("settings_rate_normal", ("சாதாரண வேகம்",), "வாசிப்பு வேகம் சாதாரணமாக அமைக்கப்பட்டது"),
        ("settings_rate_fast", ("வேகமான வேகம்",), "வாசிப்பு வேகம் வேகமாக அமைக்கப்பட்டது"),
        ("common_settings", ("அமைப்புகள்", "செட்டிங்ஸ்"), "அமைப்புகள் திறக்கப்படுகிறது"),
        ("common_ask_ai", ("ai இடம் கேள்", "உதவியாளரே கேளுங்கள்"), "நான் எப்படி உதவ முடியும்?"),
        ("common_contrast_light", ("லைட் மோட்",), "லைட் மோட் இயக்கப்பட்டது"),
        ("common_contrast_dark", ("டார்க் மோட்",), "டார்க் மோட் இயக்கப்பட்டது"),
        ("common_contrast_yellow", ("மஞ்சள் மோட்",), "மஞ்சள் மோட் இயக்கப்பட்டது"),
        ("common_contrast_blue", ("நீல மோட்",), "நீல மோட் இயக்கப்பட்டது"),
    ],
}


class AssistiveReader:
    """Reads the current document aloud and tracks the screen the user is on"""

    def __init__(self, playback, text: str = "", rate: Optional[ReadingRate] = None):
        self.playback = playback
        self._texts: Dict[str, str] = {}
        self._audio: Dict[str, RenderedAudio] = {}
        self.view = "main"
        self.settings_open = False
        self._controller: Optional[VoiceCommandController] = None
        self._registry: Optional[CommandRegistry] = None
        self._rate = rate or ReadingRate.nearest(playback.reading_rate)
        self.playback.set_rate(self._rate)
        if text:
            self.set_document(text)

    @property
    def rate(self) -> ReadingRate:
        return self._rate

    @property
    def text(self) -> str:
        return self._texts.get(Language.ENGLISH.value, "")

    def set_document(self, text: str, rendered_audio: Optional[RenderedAudio] = None) -> None:
        self.playback.stop()
        self._texts = {Language.ENGLISH.value: text}
        self._audio = {}
        if rendered_audio is not None:
            self._audio[Language.ENGLISH.value] = rendered_audio
        self.set_view("viewer")

    def set_translation(self, language, text: str, rendered_audio: Optional[RenderedAudio] = None) -> None:
        tag = language_tag(language)
        self._texts[tag] = text
        if rendered_audio is not None:
            self._audio[tag] = rendered_audio
        else:
            self._audio.pop(tag, None)

    def has_text(self, language) -> bool:
        return bool(self._texts.get(language_tag(language), "").strip())

    # ---- voice actions ----

    def read(self, language=Language.ENGLISH) -> bool:
        tag = language_tag(language)
        text = self._texts.get(tag, "")
        if not text.strip():
            if tag == Language.ENGLISH.value:
                message = NO_DOCUMENT
            else:
                message = MISSING_TRANSLATION.format(name=_LANGUAGE_NAMES.get(tag, tag))
            logger.warning(message)
            self.playback.speak(message, Language.ENGLISH.value)
            return False
        logger.info(f"Reading {len(text)} chars in {tag} at rate {self._rate.value}")
        self.playback.speak(text, tag, rendered_audio=self._audio.get(tag))
        return True

    def pause(self) -> bool:
        return self.playback.pause()

    def resume(self) -> bool:
        return self.playback.resume()

    def stop(self) -> None:
        self.playback.stop()

    def set_rate(self, rate: ReadingRate) -> ReadingRate:
        self._rate = rate
        self.playback.set_rate(rate)
        return rate

    def read_faster(self) -> ReadingRate:
        return self.set_rate(self._rate.faster())

    def read_slower(self) -> ReadingRate:
        return self.set_rate(self._rate.slower())

    # ---- screen state ----

    def go_back(self) -> None:
        self.playback.stop()
        self._texts = {}
        self._audio = {}
        self.set_view("main")

    def set_view(self, view: str) -> None:
        self.view = view
        self._publish_commands()

    def open_settings(self) -> None:
        self.settings_open = True
        self._publish_commands()

    def close_settings(self) -> None:
        self.settings_open = False
        self._publish_commands()

    def attach(self, controller: VoiceCommandController, registry: CommandRegistry) -> None:
        """Keep `controller` fed with the commands for the current screen"""
        self._controller = controller
        self._registry = registry
        self._publish_commands()

    def switch_language(self, language) -> None:
        if self._controller is not None:
            self._controller.set_language(language)
        self._publish_commands()

    def current_commands(self):
        if self._registry is None or self._controller is None:
            return []
        commands = self._registry.commands_for(self._controller.language, self.view, self.settings_open)
        if self.settings_open:
            # "close settings" contains "settings"
            commands = [c for c in commands if c.name != "common_settings"]
        return commands

    def _publish_commands(self) -> None:
        if self._controller is not None:
            self._controller.set_commands(self.current_commands())


def build_default_registry(
    reader: AssistiveReader,
    controller: Optional[VoiceCommandController] = None,
    extra_actions: Optional[Dict[str, Callable[[], None]]] = None,
) -> CommandRegistry:
    """English and Tamil command tables bound to `reader` (and `controller`)"""
    actions: Dict[str, Callable[[], None]] = {
        "viewer_read_en": lambda: reader.read(Language.ENGLISH),
        "viewer_read_ta": lambda: reader.read(Language.TAMIL),
        "viewer_pause": reader.pause,
        "viewer_resume": reader.resume,
        "viewer_stop": reader.stop,
        "viewer_back": reader.go_back,
        "viewer_rate_increase": reader.read_faster,
        "viewer_rate_decrease": reader.read_slower,
        "settings_close": reader.close_settings,
        "settings_rate_slow": lambda: reader.set_rate(ReadingRate.SLOW),
        "settings_rate_normal": lambda: reader.set_rate(ReadingRate.NORMAL),
        "settings_rate_fast": lambda: reader.set_rate(ReadingRate.FAST),
        "common_settings": reader.open_settings,
    }
    if controller is not None:
        actions.update({
            "settings_voice_on": controller.enable,
            "settings_voice_off": controller.disable,
            "settings_feedback_on": lambda: controller.set_feedback_enabled(True),
            "settings_feedback_off": lambda: controller.set_feedback_enabled(False),
            "settings_lang_en": lambda: reader.switch_language(Language.ENGLISH),
            "settings_lang_ta": lambda: reader.switch_language(Language.TAMIL),
        })
    if extra_actions:
        actions.update(extra_actions)

    registry = CommandRegistry()
    for language, phrases in COMMAND_PHRASES.items():
        for key, keywords, feedback in phrases:
            action = actions.get(key)
            if action is None:
                continue
            registry.register(language, key, keywords, action, feedback)
    logger.debug(f"Registered command tables for {', '.join(registry.languages())}")
    return registry
