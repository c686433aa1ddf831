from __future__ import annotations

from pathlib import Path

import pytest

from index_provider.settings import load_config
from index_provider.settings import loader


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_reads_sections(tmp_path: Path) -> None:
    config_path = _write(
        tmp_path / "config.toml",
        f"""
[provider]
id = "12D3KooWTestProviderPeer"
addresses = ["/ip4/10.0.0.1/tcp/4001"]
protocol_id = 0x900
metadata = "0a0b"

[ingest]
endpoint = "http://indexer:3001"
chunk_size = 16
hash_function = "sha2-512"
spool_max_memory = 4096

[http]
timeout = 5

[paths]
state_dir = "{tmp_path / 'state'}"
""",
    )

    config = load_config(config_path)

    assert config.provider.id == "12D3KooWTestProviderPeer"
    assert config.provider.addresses == ["/ip4/10.0.0.1/tcp/4001"]
    assert config.provider.metadata_record().protocol_id == 0x900
    assert config.provider.metadata == b"\x0a\x0b"
    assert config.ingest.endpoint == "http://indexer:3001"
    assert config.ingest.chunk_size == 16
    assert config.ingest.hash_function == "sha2-512"
    assert config.ingest.spool_max_memory == 4096
    assert config.http.timeout == 5.0
    assert config.paths.history_dir == tmp_path / "state" / "history"
    assert config.source == config_path


def test_env_var_selects_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write(tmp_path / "env.toml", "[ingest]\nchunk_size = 3\n")
    monkeypatch.setenv(loader.CONFIG_ENV_VAR, str(config_path))

    assert load_config().ingest.chunk_size == 3


def test_missing_default_config_uses_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv(loader.CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(loader, "PROJECT_ROOT", tmp_path)

    config = load_config()

    assert config.source is None
    assert config.ingest.endpoint == "http://localhost:8071"
    assert config.ingest.chunk_size == 10
    assert config.ingest.hash_function == "sha2-256"
    assert config.provider.protocol_id == 0x300010
    assert config.http.timeout == 30.0
    assert config.paths.state_dir == tmp_path / "data" / "state"


def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.toml")


@pytest.mark.parametrize(
    "body",
    [
        "[ingest]\nchunk_size = 0\n",
        "[provider]\nmetadata = \"zz\"\n",
        "[provider]\nprotocol_id = \"abc\"\n",
    ],
)
def test_invalid_values_raise(tmp_path: Path, body: str) -> None:
    with pytest.raises(ValueError):
        load_config(_write(tmp_path / "bad.toml", body))
