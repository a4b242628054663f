from emergent_world.config import DEEPSEEK_DEFAULT_URL, EngineConfig, load_env_files

_ENV_NAMES = (
    "THETA_API_KEY",
    "ON_DEMAND_API_ACCESS_TOKEN",
    "GOOGLE_AI_API_KEY",
    "GEMINI_API_KEY",
    "THETA_RETRY_COUNT",
    "THETA_RATE_LIMIT_RPS",
    "ENABLE_METRICS",
    "DEEPSEEK_URL",
)


def _clear(monkeypatch):
    # setenv first so monkeypatch restores the variable even if dotenv writes it later
    for name in _ENV_NAMES:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults_without_environment(monkeypatch):
    _clear(monkeypatch)
    cfg = EngineConfig()

    assert cfg.theta_api_key is None
    assert cfg.google_api_key is None
    assert cfg.deepseek_url == DEEPSEEK_DEFAULT_URL
    assert cfg.retry_max_attempts == 3
    assert cfg.retry_backoff_seconds == 0.2
    assert cfg.rate_limit_rps == 8
    assert cfg.primary_dialogue_model == "llama_3_1_70b"
    assert not cfg.enable_metrics
    assert cfg.secrets() == []


def test_environment_overrides(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("THETA_API_KEY", "tk")
    monkeypatch.setenv("GEMINI_API_KEY", "gk")
    monkeypatch.setenv("THETA_RETRY_COUNT", "5")
    monkeypatch.setenv("THETA_RATE_LIMIT_RPS", "2")
    monkeypatch.setenv("ENABLE_METRICS", "yes")

    cfg = EngineConfig()

    assert cfg.theta_api_key == "tk"
    # The on-demand key falls back to the Theta key.
    assert cfg.on_demand_api_key == "tk"
    assert cfg.google_api_key == "gk"
    assert cfg.retry_max_attempts == 5
    assert cfg.rate_limit_rps == 2
    assert cfg.enable_metrics
    assert sorted(cfg.secrets()) == ["gk", "tk", "tk"]


def test_google_ai_key_wins_over_gemini_key(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GOOGLE_AI_API_KEY", "primary")
    monkeypatch.setenv("GEMINI_API_KEY", "secondary")
    assert EngineConfig().google_api_key == "primary"


def test_load_env_files_first_match_and_shell_precedence(tmp_path, monkeypatch):
    _clear(monkeypatch)
    (tmp_path / "game").mkdir()
    (tmp_path / "game" / ".env").write_text("THETA_API_KEY=from-game\n")
    (tmp_path / ".env").write_text("THETA_API_KEY=from-root\nDEEPSEEK_URL=https://ds.test\n")
    monkeypatch.setenv("DEEPSEEK_URL", "https://shell.test")

    loaded = load_env_files(base_dir=tmp_path)

    assert loaded == (tmp_path / ".env").resolve()
    cfg = EngineConfig()
    assert cfg.theta_api_key == "from-root"
    assert cfg.deepseek_url == "https://shell.test"


def test_load_env_files_none_found(tmp_path):
    assert load_env_files(("missing.env",), base_dir=tmp_path) is None
