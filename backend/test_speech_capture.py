import asyncio

import pytest

from errors import EngineError, ErrorCode
from speech_capture import (
    AnswerBuffer,
    CloudSpeechCaptureAdapter,
    RelayedSpeechAdapter,
    SpeechCapture,
    SpeechEvent,
)


def test_interim_fragments_replace_each_other():
    buffer = AnswerBuffer("I led")
    buffer.apply(SpeechEvent("a team", is_final=False))
    buffer.apply(SpeechEvent("a team of", is_final=False))
    assert buffer.text == "I led a team of"
    assert buffer.committed == "I led"


def test_final_fragment_commits_and_clears_interim():
    buffer = AnswerBuffer()
    buffer.apply(SpeechEvent("I led a", is_final=False))
    buffer.apply(SpeechEvent("I led a team", is_final=True))
    assert buffer.committed == "I led a team"
    assert buffer.interim == ""
    buffer.apply(SpeechEvent("of five.", is_final=True))
    assert buffer.text == "I led a team of five."


def test_typing_replaces_buffer():
    buffer = AnswerBuffer()
    buffer.apply(SpeechEvent("draft", is_final=False))
    buffer.type_text("Edited answer")
    assert buffer.text == "Edited answer"
    assert buffer.interim == ""


def test_stop_flushes_pending_interim():
    adapter = RelayedSpeechAdapter()
    buffer = AnswerBuffer("Typed start.")
    capture = SpeechCapture(buffer, adapter)

    assert capture.toggle() is True
    adapter.deliver("spoken tail", is_final=False)
    assert capture.toggle() is False

    assert buffer.committed == "Typed start. spoken tail"
    assert buffer.interim == ""
    assert adapter.active is False


def test_events_after_stop_are_ignored():
    adapter = RelayedSpeechAdapter()
    buffer = AnswerBuffer()
    capture = SpeechCapture(buffer, adapter)
    capture.start()
    adapter.deliver("hello", is_final=False)
    capture.stop()
    adapter.active = True  # a straggling result from the recognizer
    adapter.deliver("hello", is_final=True)
    assert buffer.text == "hello"


def test_unsupported_is_reported_once():
    adapter = RelayedSpeechAdapter(supported=False)
    capture = SpeechCapture(AnswerBuffer(), adapter)

    with pytest.raises(EngineError) as exc_info:
        capture.toggle()
    assert exc_info.value.code == ErrorCode.UNSUPPORTED_CAPABILITY

    assert capture.toggle() is False
    assert capture.start() is False
    assert capture.recording is False
    assert adapter.active is False


def test_close_unsubscribes():
    adapter = RelayedSpeechAdapter()
    buffer = AnswerBuffer()
    capture = SpeechCapture(buffer, adapter)
    capture.start()
    capture.close()
    adapter.active = True
    adapter.deliver("late", is_final=True)
    assert buffer.text == ""


def test_cloud_adapter_needs_project(monkeypatch):
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    assert CloudSpeechCaptureAdapter().is_supported() is False


async def test_cloud_adapter_streams_interim_and_final(speech_client):
    speech_client.script(("five years", False), ("five years of PM", True))
    adapter = CloudSpeechCaptureAdapter()
    buffer = AnswerBuffer("I have")
    capture = SpeechCapture(buffer, adapter)
    seen = []
    adapter.subscribe(seen.append)

    assert capture.start() is True
    adapter.push_audio(b"\x00\x01")
    adapter.push_audio(b"\x02\x03")
    for _ in range(200):
        if len(seen) == 2:
            break
        await asyncio.sleep(0.01)

    assert seen == [SpeechEvent("five years", False), SpeechEvent("five years of PM", True)]
    assert buffer.text == "I have five years of PM"
    assert speech_client.audio == [b"\x00\x01", b"\x02\x03"]
    assert speech_client.config.recognizer == "projects/test-project/locations/global/recognizers/_"

    # A result still in flight when capture stops does not touch the answer.
    capture.stop()
    adapter.emit(SpeechEvent("five years of PM", True))
    assert buffer.text == "I have five years of PM"
