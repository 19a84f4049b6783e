from numnum.config import Settings


def test_env_file_is_declared_on_model_config():
    assert Settings.model_config["env_file"] == ".env"
    assert Settings.model_config["env_file_encoding"] == "utf-8"


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("MAP_SNIPPET_LENGTH", "40")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    configured = Settings(_env_file=None)

    assert configured.map_snippet_length == 40
    assert configured.log_level == "debug"
    assert configured.posts_page_size == 50
