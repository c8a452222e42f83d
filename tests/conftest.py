import pytest

from aichat.config import ChatConfig, ProviderConfig
from aichat.db import Database


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'chat.db'}")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def openai_config():
    return ProviderConfig(
        key="openai",
        label="OpenAI GPT",
        endpoint="https://llm.example.test/v1/chat/completions",
        model="gpt-test",
        api_key="sk-test",
        temperature=0.5,
    )


@pytest.fixture
def ramses_config():
    return ProviderConfig(
        key="ramses",
        label="RAMSES",
        endpoint="https://ramses.example.test/v1/chat/completions",
        model="mistral-test",
        api_key="ramses-key",
        streaming=True,
    )


@pytest.fixture
def chat_config(tmp_path, openai_config, ramses_config):
    return ChatConfig(
        providers={"openai": openai_config, "ramses": ramses_config},
        database_url=f"sqlite:///{tmp_path / 'chat.db'}",
    )
