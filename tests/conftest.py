from pathlib import Path
from types import SimpleNamespace

import pytest

import gemini_service
from categories import get_category
from settings import Settings


class FakeResponse:
    def __init__(self, text):
        self.text = text
        parts = [SimpleNamespace(text=text)] if text else []
        self.candidates = [SimpleNamespace(content=SimpleNamespace(parts=parts))]


class FakeChat:
    def __init__(self, backend, history):
        self.backend = backend
        self.history = history

    def send_message(self, content):
        self.backend.sent_messages.append(content)
        self.backend.lock_held.append(gemini_service.GENAI_LOCK.locked())
        if self.backend.error is not None:
            raise self.backend.error
        return FakeResponse(self.backend.reply)


class FakeModel:
    def __init__(self, backend, model_name, system_instruction):
        self.backend = backend
        self.model_name = model_name
        self.system_instruction = system_instruction

    def generate_content(self, contents, generation_config=None):
        self.backend.requests.append(SimpleNamespace(contents=contents, generation_config=generation_config,
                                                     system_instruction=self.system_instruction,
                                                     lock_held=gemini_service.GENAI_LOCK.locked()))
        if self.backend.error is not None:
            raise self.backend.error
        return FakeResponse(self.backend.reply)

    def start_chat(self, history=None):
        chat = FakeChat(self.backend, history or [])
        self.backend.chats.append(chat)
        return chat


class FakeGemini:
    """Records what the services send to Gemini and answers with `reply` (or raises `error`)."""

    def __init__(self):
        self.reply = ""
        self.error = None
        self.configured_keys = []
        self.models = []
        self.requests = []
        self.chats = []
        self.sent_messages = []
        self.lock_held = []

    def configure(self, api_key=None):
        self.configured_keys.append(api_key)

    def GenerativeModel(self, model_name, system_instruction=None):
        model = FakeModel(self, model_name, system_instruction)
        self.models.append(model)
        return model


@pytest.fixture
def fake_gemini(monkeypatch):
    backend = FakeGemini()
    monkeypatch.setattr(gemini_service.genai, "configure", backend.configure)
    monkeypatch.setattr(gemini_service.genai, "GenerativeModel", backend.GenerativeModel)
    return backend


@pytest.fixture
def settings(tmp_path):
    return Settings(fallback_api_key=None, model_name="test-model", retries=1, storage_dir=tmp_path)


@pytest.fixture
def occupancy():
    return get_category("occupancy")


@pytest.fixture
def revenue():
    return get_category("revenue")


@pytest.fixture
def data_dir():
    return Path(__file__).parent / "data"
