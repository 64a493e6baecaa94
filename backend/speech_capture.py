import asyncio
import os
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from errors import EngineError, ErrorCode


@dataclass(frozen=True)
class SpeechEvent:
    text: str
    is_final: bool


Listener = Callable[[SpeechEvent], None]


class SpeechCaptureAdapter(ABC):
    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def emit(self, event: SpeechEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    @abstractmethod
    def is_supported(self) -> bool: ...

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


def _append(base: str, fragment: str) -> str:
    fragment = fragment.strip()
    if not fragment:
        return base
    if not base:
        return fragment
    return base + ("" if base[-1].isspace() else " ") + fragment


class AnswerBuffer:
    """Answer text being composed, from typing and from speech.

    `committed` is permanent. `interim` is the recognizer's current guess and
    is replaced wholesale by every event; it only becomes permanent through a
    final event or flush().
    """

    def __init__(self, text: str = ""):
        self.committed = text
        self.interim = ""

    @property
    def text(self) -> str:
        return _append(self.committed, self.interim)

    def type_text(self, text: str) -> None:
        # The text box shows committed + interim, so an edit replaces both.
        self.committed = text
        self.interim = ""

    def apply(self, event: SpeechEvent) -> None:
        if event.is_final:
            self.committed = _append(self.committed, event.text)
            self.interim = ""
        else:
            self.interim = event.text

    def flush(self) -> None:
        self.committed = self.text
        self.interim = ""

    def clear(self) -> None:
        self.committed = ""
        self.interim = ""


class SpeechCapture:
    """Toggles an adapter on and off over one AnswerBuffer."""

    def __init__(self, buffer: AnswerBuffer, adapter: SpeechCaptureAdapter):
        self.buffer = buffer
        self.adapter = adapter
        self.recording = False
        self.unsupported_reported = False
        self._unsubscribe = adapter.subscribe(self._on_event)

    def _on_event(self, event: SpeechEvent) -> None:
        # Trailing events after stop() would duplicate the flushed tail.
        if self.recording:
            self.buffer.apply(event)

    def start(self) -> bool:
        if self.recording:
            return True
        if not self.adapter.is_supported():
            if not self.unsupported_reported:
                self.unsupported_reported = True
                print("[SPEECH] Capture unsupported in this environment; manual typing only")
                raise EngineError(ErrorCode.UNSUPPORTED_CAPABILITY)
            return False
        self.adapter.start()
        self.recording = True
        return True

    def stop(self) -> None:
        if not self.recording:
            return
        self.adapter.stop()
        self.recording = False
        self.buffer.flush()

    def toggle(self) -> bool:
        """Returns whether capture is on afterwards."""
        if self.recording:
            self.stop()
            return False
        return self.start()

    def close(self) -> None:
        self.stop()
        self._unsubscribe()


class RelayedSpeechAdapter(SpeechCaptureAdapter):
    """Recognition runs in the client; its results are relayed in as events."""

    def __init__(self, supported: bool = True):
        super().__init__()
        self.supported = supported
        self.active = False

    def is_supported(self) -> bool:
        return self.supported

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False

    def deliver(self, text: str, is_final: bool) -> None:
        if self.active:
            self.emit(SpeechEvent(text=text, is_final=is_final))


class CloudSpeechCaptureAdapter(SpeechCaptureAdapter):
    """Streams raw PCM16 audio to Google Cloud Speech-to-Text V2 with interim results.

    Recognition runs on a worker thread; events are handed back to the event
    loop that called start().
    """

    def __init__(self, sample_rate: int = 16000, language: str = "en-US"):
        super().__init__()
        self.sample_rate = sample_rate
        self.language = language
        self.project_id = os.getenv("GOOGLE_CLOUD_PROJECT")
        self.model = os.getenv("STT_MODEL", "latest_long")
        self._audio: Optional[queue.Queue] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def is_supported(self) -> bool:
        if not self.project_id:
            return False
        try:
            import google.cloud.speech_v2  # noqa: F401
        except ImportError:
            return False
        return True

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._audio = queue.Queue()
        self._thread = threading.Thread(target=self._recognize, args=(self._audio,), daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Ends the audio stream without waiting for the recognizer.

        Results still in flight reach listeners after SpeechCapture has
        flushed and stopped recording, so they are dropped; the answer keeps
        the interim tail that was showing at stop time.
        """
        if self._audio is not None:
            self._audio.put(None)
        self._audio = None
        self._thread = None

    def push_audio(self, pcm_bytes: bytes) -> None:
        if self._audio is not None and pcm_bytes:
            self._audio.put(pcm_bytes)

    def _make_client(self):
        from google.cloud.speech_v2 import SpeechClient
        return SpeechClient()

    def _recognize(self, audio: queue.Queue) -> None:
        from google.cloud.speech_v2.types import cloud_speech

        config_request = cloud_speech.StreamingRecognizeRequest(
            recognizer=f"projects/{self.project_id}/locations/global/recognizers/_",
            streaming_config=cloud_speech.StreamingRecognitionConfig(
                config=cloud_speech.RecognitionConfig(
                    explicit_decoding_config=cloud_speech.ExplicitDecodingConfig(
                        encoding=cloud_speech.ExplicitDecodingConfig.AudioEncoding.LINEAR16,
                        sample_rate_hertz=self.sample_rate,
                        audio_channel_count=1,
                    ),
                    language_codes=[self.language],
                    model=self.model,
                ),
                streaming_features=cloud_speech.StreamingRecognitionFeatures(interim_results=True),
            ),
        )

        def requests():
            yield config_request
            while True:
                chunk = audio.get()
                if chunk is None:
                    return
                yield cloud_speech.StreamingRecognizeRequest(audio=chunk)

        loop = self._loop
        try:
            client = self._make_client()
            for response in client.streaming_recognize(requests=requests()):
                for result in response.results:
                    if not result.alternatives:
                        continue
                    event = SpeechEvent(text=result.alternatives[0].transcript, is_final=result.is_final)
                    loop.call_soon_threadsafe(self.emit, event)
        except Exception as e:
            import traceback
            print(f"[SPEECH] ERROR during streaming recognition: {e}")
            traceback.print_exc()
