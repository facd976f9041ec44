import pytest

from reading_log.config import AppConfig, env_flag, load_dotenv

ENV_VARS = (
    "READING_LOG_DATA_DIR",
    "READING_LOG_BOOKS_DIR",
    "GOODREADS_USER_ID",
    "GOODREADS_SHELVES",
    "GOOGLE_BOOKS_API_KEY",
    "INCREMENTAL_SYNC",
    "ENABLE_METADATA_ENRICHMENT",
    "ENRICH_CONCURRENCY",
    "ENRICH_RATE_PER_SEC",
    "HTTP_TIMEOUT",
    "HTTP_RETRIES",
    "READING_GOAL",
    "ENV_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    cfg = AppConfig.from_env()
    assert cfg.data_dir == "src/data"
    assert cfg.books_dir == "src/content/books"
    assert cfg.goodreads_user_id is None
    assert cfg.goodreads_shelves == ["read"]
    assert not cfg.incremental
    assert cfg.yearly_goal == 52
    assert cfg.enrich
    cfg.validate()


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GOODREADS_USER_ID", " 12345-reader ")
    monkeypatch.setenv("GOODREADS_SHELVES", "read, currently-reading,")
    monkeypatch.setenv("INCREMENTAL_SYNC", "true")
    monkeypatch.setenv("ENABLE_METADATA_ENRICHMENT", "0")
    monkeypatch.setenv("ENRICH_CONCURRENCY", "8")

    cfg = AppConfig.from_env()
    assert cfg.goodreads_user_id == "12345-reader"
    assert cfg.goodreads_shelves == ["read", "currently-reading"]
    assert cfg.incremental
    assert not cfg.enrich
    assert cfg.concurrency == 8
    cfg.validate()


def test_invalid_values_exit(monkeypatch) -> None:
    monkeypatch.setenv("HTTP_TIMEOUT", "soon")
    with pytest.raises(SystemExit):
        AppConfig.from_env()

    monkeypatch.delenv("HTTP_TIMEOUT")
    monkeypatch.setenv("GOODREADS_USER_ID", "reader")
    with pytest.raises(SystemExit):
        AppConfig.from_env().validate()


def test_env_flag(monkeypatch) -> None:
    monkeypatch.setenv("INCREMENTAL_SYNC", "maybe")
    assert env_flag("INCREMENTAL_SYNC", True)
    monkeypatch.setenv("INCREMENTAL_SYNC", "off")
    assert not env_flag("INCREMENTAL_SYNC", True)


def test_load_dotenv_keeps_existing(tmp_path, monkeypatch) -> None:
    env = tmp_path / "custom.env"
    env.write_text(
        "# comment\n"
        "export GOODREADS_USER_ID=777 # inline\n"
        "READING_LOG_DATA_DIR='data dir'\n"
        "GOOGLE_BOOKS_API_KEY=\"abc#def\"\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("READING_LOG_DATA_DIR", "already-set")
    monkeypatch.chdir(tmp_path)

    used = load_dotenv(str(env))

    assert used == [str(env.resolve())]
    cfg = AppConfig.from_env()
    assert cfg.goodreads_user_id == "777"
    assert cfg.data_dir == "already-set"
    assert cfg.google_books_api_key == "abc#def"
