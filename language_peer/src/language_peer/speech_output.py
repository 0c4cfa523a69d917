"""
Speech Output

Speaks agent replies through a speech backend and reports completion from
the backend's own end/error events. No timers are involved: an utterance
is finished when the facility says it is, or when stop() cancels it.

At most one utterance is audible at a time; speak() cancels whatever is
playing before starting.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import pyttsx3

from language_peer.errors import SpeechBackendError
from language_peer.logger import get_logger
from language_peer.models import new_id
from language_peer.personalities import Personality, VoiceParams

logger = get_logger("language_peer.speech")

EVENT_START = "start"
EVENT_END = "end"
EVENT_ERROR = "error"

# (event, detail) -> None; may be called from any thread
SpeechEventCallback = Callable[[str, Optional[str]], None]


@dataclass(frozen=True)
class Voice:
    """A voice offered by the speech facility."""
    id: str
    name: str
    languages: Tuple[str, ...] = ()


def normalize_language(tag: str) -> str:
    return tag.strip().lower().replace("_", "-")


def select_voice(voices: Sequence[Voice], params: VoiceParams, language: str) -> Optional[Voice]:
    """
    Pick the voice for an utterance.

    Order: first preference (in preference order) matching a voice name,
    then any voice for the language, then None for the platform default.
    """
    for preference in params.voice_preference_list:
        wanted = preference.lower()
        for voice in voices:
            if wanted in voice.name.lower():
                return voice

    lang = normalize_language(language)
    primary = lang.split("-")[0]
    for exact in (True, False):
        for voice in voices:
            for voice_lang in voice.languages:
                candidate = normalize_language(voice_lang)
                if candidate == lang or (not exact and candidate.split("-")[0] == primary):
                    return voice
    return None


class SpeechBackend:
    """
    Contract for a speech facility.

    start() must return promptly and later report EVENT_END or EVENT_ERROR
    through on_event (EVENT_START is optional). After cancel() the backend
    may stay silent.
    """

    def is_supported(self) -> bool:
        return True

    def list_voices(self) -> List[Voice]:
        return []

    def start(
        self,
        text: str,
        voice: Optional[Voice],
        params: VoiceParams,
        on_event: SpeechEventCallback,
    ) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        pass


class Pyttsx3SpeechBackend(SpeechBackend):
    """
    Platform text-to-speech via pyttsx3 (SAPI5, NSSpeechSynthesizer, eSpeak).

    pyttsx3 exposes rate and voice; pitch is only honoured through the
    chosen voice. Each utterance runs the engine loop in its own worker
    thread, which first waits for the previous (cancelled) loop to unwind,
    so start() never blocks the caller. The engine's started/finished/error
    callbacks are forwarded as events; end and error are delivered once.
    """

    BASE_RATE_WPM = 175
    UNWIND_TIMEOUT_S = 2.0

    def __init__(self, driver_name: Optional[str] = None):
        self._engine = None
        self._worker: Optional[threading.Thread] = None
        self._listeners = {}
        self._lock = threading.Lock()
        try:
            self._engine = pyttsx3.init(driverName=driver_name)
        except Exception as e:
            # Missing platform driver (no eSpeak, no audio session, ...)
            logger.warning(f"pyttsx3 init failed, speech unavailable: {e}")
            return

        self._engine.connect("started-utterance", self._on_started)
        self._engine.connect("finished-utterance", self._on_finished)
        self._engine.connect("error", self._on_error)

    def is_supported(self) -> bool:
        return self._engine is not None

    def list_voices(self) -> List[Voice]:
        if self._engine is None:
            return []
        voices = []
        for v in self._engine.getProperty("voices") or []:
            languages = []
            for lang in getattr(v, "languages", None) or []:
                if isinstance(lang, bytes):
                    # eSpeak prefixes a priority byte
                    lang = lang.decode("utf-8", "ignore")
                lang = "".join(ch for ch in lang if ch.isprintable()).strip()
                if lang:
                    languages.append(lang)
            voices.append(Voice(id=v.id, name=v.name or v.id, languages=tuple(languages)))
        return voices

    def start(self, text, voice, params, on_event):
        if self._engine is None:
            raise SpeechBackendError("pyttsx3 engine unavailable")

        utterance_id = new_id("utt")
        with self._lock:
            self._listeners = {utterance_id: on_event}

        previous = self._worker
        self._worker = threading.Thread(
            target=self._run,
            args=(utterance_id, text, voice, params, previous),
            daemon=True,
        )
        self._worker.start()

    def _run(
        self,
        utterance_id: str,
        text: str,
        voice: Optional[Voice],
        params: VoiceParams,
        previous: Optional[threading.Thread],
    ) -> None:
        try:
            if previous is not None:
                previous.join(timeout=self.UNWIND_TIMEOUT_S)
                if previous.is_alive():
                    raise SpeechBackendError("previous utterance still running")
            with self._lock:
                if utterance_id not in self._listeners:
                    # Cancelled while waiting
                    return

            self._engine.setProperty("rate", int(self.BASE_RATE_WPM * params.rate))
            if voice is not None:
                self._engine.setProperty("voice", voice.id)
            self._engine.say(text, utterance_id)
            self._engine.runAndWait()
        except Exception as e:
            self._emit(utterance_id, EVENT_ERROR, str(e))
            return
        # Some drivers return from the loop without a finished callback
        self._emit(utterance_id, EVENT_END)

    def cancel(self) -> None:
        if self._engine is None:
            return
        with self._lock:
            self._listeners = {}
        self._engine.stop()

    def _emit(self, utterance_id: str, event: str, detail: Optional[str] = None) -> None:
        with self._lock:
            if event == EVENT_START:
                listener = self._listeners.get(utterance_id)
            else:
                listener = self._listeners.pop(utterance_id, None)
        if listener is not None:
            listener(event, detail)

    def _on_started(self, name):
        self._emit(name, EVENT_START)

    def _on_finished(self, name, completed=True):
        self._emit(name, EVENT_END, None if completed else "interrupted")

    def _on_error(self, name, exception):
        self._emit(name, EVENT_ERROR, str(exception))


class SpeechOutputDriver:
    """
    Turns agent text into speech with personality voice parameters.

    Args:
        backend: speech facility, or None when speech is unsupported
        language: language used for voice fallback selection
    """

    def __init__(self, backend: Optional[SpeechBackend] = None, language: str = "en-US"):
        self.backend = backend
        self.language = language
        self._current: Optional[asyncio.Future] = None
        self._capability_logged = False

    @property
    def is_speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    def is_supported(self) -> bool:
        return self.backend is not None and self.backend.is_supported()

    async def speak(self, text: str, personality: Personality) -> None:
        """
        Speak text and return once playback ends, errors or is stopped.

        Resolves immediately (never raises) when speech is unsupported.
        """
        self.stop()

        if not self.is_supported():
            if not self._capability_logged:
                logger.warning("Speech output unsupported on this platform, continuing silently")
                self._capability_logged = True
            return
        if not text or not text.strip():
            return

        loop = asyncio.get_running_loop()
        done = loop.create_future()
        self._current = done

        def on_event(event: str, detail: Optional[str] = None) -> None:
            loop.call_soon_threadsafe(self._handle_event, done, event, detail)

        params = personality.voice_params
        try:
            voice = select_voice(self.backend.list_voices(), params, params.language or self.language)
            logger.debug(
                "Speaking",
                data={"agent": personality.id, "voice": voice.name if voice else "platform default",
                      "rate": params.rate, "pitch": params.pitch, "chars": len(text)},
            )
            self.backend.start(text, voice, params, on_event)
        except SpeechBackendError as e:
            logger.warning(f"Speech could not start: {e}")
            self._resolve(done)
        except Exception as e:
            # Platform engines raise their own types (pyttsx3: RuntimeError)
            logger.error("Speech backend failed, continuing silently", error=e)
            self._resolve(done)

        await done

    def _resolve(self, done: asyncio.Future) -> None:
        if not done.done():
            done.set_result(None)
        if self._current is done:
            self._current = None

    def _handle_event(self, done: asyncio.Future, event: str, detail: Optional[str]) -> None:
        if done.done():
            # Late event for a stopped or superseded utterance
            return
        if event == EVENT_START:
            logger.debug("Playback started")
        elif event == EVENT_END:
            logger.debug(f"Playback finished{f' ({detail})' if detail else ''}")
            done.set_result(None)
        elif event == EVENT_ERROR:
            logger.warning(f"Playback error: {detail}")
            done.set_result(None)

    def stop(self) -> None:
        """Cancel current speech. Safe to call when nothing is playing."""
        current = self._current
        self._current = None
        if current is None or current.done():
            return
        if self.backend is not None:
            self.backend.cancel()
        current.set_result(None)
        logger.debug("Playback stopped")
