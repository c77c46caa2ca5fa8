from bustracker.infrastructure.config import LLMSettings, RemoteStoreSettings, Settings


def test_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("REVIEW_ENCODING", " JSON ")
    monkeypatch.setenv("SIMULATED_LATENCY_MS", "250")
    monkeypatch.delenv("FIRESTORE_PROJECT_ID", raising=False)

    settings = Settings()

    assert settings.review_encoding == "json"
    assert settings.simulated_latency_ms == 250
    assert not settings.remote.enabled


def test_validate_reports_missing_services():
    settings = Settings(
        llm=LLMSettings(api_key=""),
        remote=RemoteStoreSettings(project_id=""),
        review_encoding="xml",
    )

    issues = settings.validate()

    assert any("OPENROUTER_API_KEY" in i for i in issues)
    assert any("FIRESTORE_PROJECT_ID" in i for i in issues)
    assert any("REVIEW_ENCODING" in i for i in issues)


def test_validate_clean_config():
    settings = Settings(
        llm=LLMSettings(api_key="k"),
        remote=RemoteStoreSettings(project_id="demo"),
        review_encoding="delimited",
    )

    assert settings.validate() == []


def test_model_defaults_to_audio_capable_model(monkeypatch):
    monkeypatch.delenv("LLM_MODEL", raising=False)
    assert LLMSettings().model == "google/gemini-2.5-flash"

    monkeypatch.setenv("LLM_MODEL", "meta-llama/llama-3.3-70b-instruct:free")
    assert LLMSettings().model == "meta-llama/llama-3.3-70b-instruct:free"


def test_password_reset_ttl_from_environment(monkeypatch):
    monkeypatch.setenv("PASSWORD_RESET_TTL_SECONDS", "60")
    assert Settings().password_reset_ttl_seconds == 60
