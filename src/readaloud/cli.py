#!/usr/bin/env python3
"""
ReadAloud CLI - read text aloud, drive a document by voice, or talk to the assistant
"""
import argparse
import os
import sys
import threading
import time
from typing import Optional

import numpy as np
try:
    import soundfile as sf
except Exception:  # libsndfile missing; only raw PCM16 and base64 files can be loaded
    sf = None  # type: ignore

from . import __version__
from . import config as CFG
from .error_handler import ReadAloudException
from .logging_utils import setup_logger
from .speech_types import Language, ReadingRate

logger = setup_logger("readaloud.cli", "logs/readaloud.log")

_RATES = {"slow": ReadingRate.SLOW, "normal": ReadingRate.NORMAL, "fast": ReadingRate.FAST}


def load_rendered_audio(path: str, sample_rate: int) -> bytes:
    """Load a clip as mono PCM16 bytes at `sample_rate`.

    `.pcm`/`.raw` files are taken as-is, `.b64`/`.txt` as base64 text; anything
    else is read with soundfile.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in (".pcm", ".raw"):
        with open(path, "rb") as f:
            return f.read()
    if ext in (".b64", ".txt"):
        from .audio_output import decode_base64_audio
        with open(path, "r", encoding="utf-8") as f:
            return decode_base64_audio(f.read())
    if sf is None:
        raise ReadAloudException("soundfile not available; use a .pcm or .b64 clip", component="cli", operation="load_audio")

    from .audio_output import resample
    data, sr = sf.read(path, dtype="float32", always_2d=True)
    mono = data.mean(axis=1)
    mono = resample(mono, sr, sample_rate)
    return (np.clip(mono, -1.0, 1.0) * 32767).astype("<i2").tobytes()


def _read_text(args) -> str:
    if getattr(args, "file", None):
        with open(args.file, "r", encoding="utf-8") as f:
            return f.read()
    return " ".join(getattr(args, "text", None) or [])


def _print_highlight(text_ref):
    def show(span):
        if not span.is_empty:
            print(f"  > {span.slice(text_ref[0])}", flush=True)
    return show


def cmd_speak(args) -> int:
    from .playback import PlaybackEngine

    text = _read_text(args)
    if not text.strip():
        print("Nothing to read")
        return 1

    text_ref = [text]
    done = threading.Event()
    with PlaybackEngine(on_highlight=_print_highlight(text_ref) if args.show_words else None) as engine:
        if args.rate:
            engine.set_rate(_RATES[args.rate])
        rendered: Optional[bytes] = None
        if args.audio:
            rendered = load_rendered_audio(args.audio, engine.sample_rate)
        engine.speak(text, args.lang, rendered_audio=rendered, on_complete=done.set)
        try:
            while not done.wait(0.2):
                if not engine.is_playing and not engine.is_paused:
                    break
        except KeyboardInterrupt:
            print("\nStopping...")
            engine.stop()
    return 0


def cmd_listen(args) -> int:
    from .commands import VoiceCommandController
    from .playback import PlaybackEngine
    from .reader import AssistiveReader, build_default_registry

    text = _read_text(args)
    with PlaybackEngine() as engine:
        reader = AssistiveReader(engine)
        controller = VoiceCommandController(
            engine,
            language=args.lang,
            on_permission_denied=lambda: print("Microphone access denied; voice commands are off."),
        )
        registry = build_default_registry(reader, controller)
        reader.attach(controller, registry)
        if text.strip():
            reader.set_document(text)
        controller.enable()
        print(f"Listening for voice commands in {controller.language}. Ctrl-C to quit.")
        try:
            while True:
                time.sleep(0.5)
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            controller.disable()
    return 0


def cmd_chat(args) -> int:
    from .dialogue import DialogueLoop
    from .playback import PlaybackEngine
    from .responder import ChatResponder

    with PlaybackEngine() as engine:
        loop = DialogueLoop(
            engine,
            ChatResponder(),
            language=args.lang,
            thinking_mode=args.thinking or None,
            on_status=lambda status: print(f"[{status.value}]", flush=True),
        )
        loop.open()
        print("Ask a question. Press Enter to re-engage after media replies, Ctrl-C to quit.")
        try:
            while True:
                line = sys.stdin.readline()
                if not line:
                    time.sleep(0.5)
                    continue
                if loop.awaiting_reengage:
                    loop.reengage()
                elif loop.last_reply:
                    print(loop.last_reply)
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            loop.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="readaloud",
        description="ReadAloud - speech playback with word highlighting and voice control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  readaloud speak "Hello there"              # Read text with the native voice
  readaloud speak --file page.txt --audio page.wav
  readaloud listen --file page.txt           # Control reading with voice commands
  readaloud chat --lang ta-IN                # Voice dialogue with the assistant
        """
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--config', default=None, help='Path to configuration file')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    sub = parser.add_subparsers(dest='command', required=True)

    speak = sub.add_parser('speak', help='Read text aloud')
    speak.add_argument('text', nargs='*', help='Text to read')
    speak.add_argument('--file', help='Read text from a file')
    speak.add_argument('--lang', default=Language.ENGLISH.value, help='Language tag (en-US, ta-IN, ...)')
    speak.add_argument('--audio', help='Pre-rendered clip (.wav/.flac, raw .pcm, or base64 .b64)')
    speak.add_argument('--rate', choices=sorted(_RATES), help='Native voice reading rate')
    speak.add_argument('--show-words', action='store_true', help='Print each highlighted word')
    speak.set_defaults(func=cmd_speak)

    listen = sub.add_parser('listen', help='Voice commands over a document')
    listen.add_argument('--file', help='Document to open in the viewer')
    listen.add_argument('--lang', default=None, help='Recognition language tag')
    listen.set_defaults(func=cmd_listen)

    chat = sub.add_parser('chat', help='Voice dialogue with the assistant')
    chat.add_argument('--lang', default=None, help='Recognition and speech language tag')
    chat.add_argument('--thinking', action='store_true', help='Use the thinking model')
    chat.set_defaults(func=cmd_chat)

    return parser


def main(argv=None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    if args.debug:
        os.environ['DEBUG'] = '1'
    if args.config:
        CFG.reload_config(args.config)

    try:
        code = args.func(args)
    except KeyboardInterrupt:
        print("\nShutting down...")
        code = 0
    except (ReadAloudException, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}")
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    main()
