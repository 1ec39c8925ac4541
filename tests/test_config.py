import pytest

from backend.binder.config import get_settings
from backend.binder.packing.types import CompressionLevel


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_environment_overrides_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("BINDER_CEILING_MB", "8.5")
    monkeypatch.setenv("BINDER_COMPRESSION_LEVEL", "HIGH")
    monkeypatch.setenv("BINDER_PART_LABEL", "Del")
    monkeypatch.setenv("BINDER_SESSION_DB_PATH", str(tmp_path / "books.db"))
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.example, http://b.example")

    settings = get_settings()

    assert settings.ceiling_mb == 8.5
    assert settings.compression_level == CompressionLevel.HIGH
    assert settings.part_label == "Del"
    assert settings.session_db_path == tmp_path / "books.db"
    assert settings.cors_allow_origins == ("http://a.example", "http://b.example")
    parameters = settings.default_parameters()
    assert parameters.ceiling_mb == 8.5
    assert parameters.compression_level == CompressionLevel.HIGH


@pytest.mark.parametrize(
    "name,value",
    [
        ("BINDER_CEILING_MB", "fifteen"),
        ("BINDER_MAX_ASSEMBLY_FAILURES", "2.5"),
        ("BINDER_COMPRESSION_LEVEL", "extreme"),
        ("BINDER_VERIFY_THRESHOLD", "1.5"),
    ],
)
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        get_settings()


def test_blank_drive_token_means_local_storage(monkeypatch):
    monkeypatch.setenv("DRIVE_ACCESS_TOKEN", "   ")
    assert get_settings().drive_access_token is None
