#!/usr/bin/env python3
"""
External text responder for the voice dialogue.

Posts an OpenAI-compatible chat completion and returns the reply text. The
dialogue loop speaks whatever comes back, so failures are turned into fixed
spoken messages instead of exceptions.
"""
from typing import Any, Dict, Optional

import requests

from . import config as CFG
from .error_handler import ErrorSeverity, handle_error
from .logging_utils import setup_logger

logger = setup_logger("readaloud.responder", "logs/responder.log")

EMPTY_PROMPT_REPLY = "I did not hear your question. Please try again."
FAILURE_REPLY = "Sorry, I couldn't get a response right now. Please try again."


class ChatResponder:
    def __init__(
        self,
        server_url: Optional[str] = None,
        model: Optional[str] = None,
        thinking_model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.server_url = server_url or CFG.get_responder_url()
        self.model = model or CFG.get_responder_model()
        self.thinking_model = thinking_model or CFG.get_responder_thinking_model()
        self.system_prompt = system_prompt or CFG.get_responder_system_prompt()
        self.api_key = api_key if api_key is not None else CFG.get_responder_api_key()
        self.timeout = timeout or CFG.get_responder_timeout()
        self.session = session or requests.Session()

    def build_payload(self, prompt: str, thinking_mode: bool = False) -> Dict[str, Any]:
        return {
            "model": self.thinking_model if thinking_mode else self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
        }

    def respond(self, transcript: str, thinking_mode: bool = False) -> str:
        prompt = (transcript or "").strip()
        if not prompt:
            return EMPTY_PROMPT_REPLY

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = self.build_payload(prompt, thinking_mode)
        logger.info(f"Asking {payload['model']} ({len(prompt)} chars)")
        try:
            r = self.session.post(self.server_url, json=payload, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
            reply = data["choices"][0]["message"]["content"]
        except requests.exceptions.Timeout as e:
            handle_error(e, "responder", "respond", ErrorSeverity.MEDIUM)
            return FAILURE_REPLY
        except requests.exceptions.RequestException as e:
            handle_error(e, "responder", "respond", ErrorSeverity.MEDIUM)
            return FAILURE_REPLY
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Malformed chat completion: {e}")
            handle_error(e, "responder", "parse_reply", ErrorSeverity.LOW)
            return FAILURE_REPLY

        if not isinstance(reply, str) or not reply.strip():
            logger.warning("Chat completion returned no text")
            return FAILURE_REPLY
        return reply.strip()
