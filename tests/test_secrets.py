import pytest

from conveyor.errors import ConfigurationError
from conveyor.secrets import (
    ChainSecretStore,
    EnvSecretStore,
    MappingSecretStore,
    SecretContext,
    load_secrets_file,
)


def test_env_store_prefix():
    store = EnvSecretStore(environ={"CI_TOKEN": "abc"}, prefix="CI_")
    assert store.get("TOKEN") == "abc"
    assert store.get("OTHER") is None


def test_chain_store_first_wins():
    store = ChainSecretStore([MappingSecretStore({"A": "file"}), MappingSecretStore({"A": "env", "B": "b"})])
    assert store.get("A") == "file"
    assert store.get("B") == "b"
    assert store.get("C") is None


def test_load_secrets_file(tmp_path):
    p = tmp_path / "secrets.yaml"
    p.write_text("TOKEN: abc\nPORT: 5432\n")
    store = load_secrets_file(p)
    assert store.get("TOKEN") == "abc"
    assert store.get("PORT") == "5432"


def test_load_secrets_file_rejects_list(tmp_path):
    p = tmp_path / "secrets.yaml"
    p.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError, match="must contain a mapping"):
        load_secrets_file(p)


def test_context_lifecycle():
    ctx = SecretContext(MappingSecretStore({"TOKEN": "abc"}), ["TOKEN"])
    with pytest.raises(RuntimeError):
        ctx.resolve(["TOKEN"])

    with ctx as loaded:
        assert loaded.resolve(["TOKEN"]) == {"TOKEN": "abc"}
        assert loaded.redactor().redact("abc") == "***"

    # Values are discarded once the run ends.
    with pytest.raises(RuntimeError):
        ctx.resolve(["TOKEN"])
    assert ctx.redactor().secrets == ()


def test_context_missing_secret():
    ctx = SecretContext(MappingSecretStore({}), ["TOKEN", "OTHER"])
    with pytest.raises(ConfigurationError, match="Missing secrets: TOKEN, OTHER"):
        with ctx:
            pass


def test_context_undeclared_secret():
    with SecretContext(MappingSecretStore({"A": "1", "B": "2"}), ["A"]) as ctx:
        with pytest.raises(ConfigurationError, match="not declared"):
            ctx.resolve(["B"])


def test_context_repr_hides_values():
    with SecretContext(MappingSecretStore({"TOKEN": "supersecret"}), ["TOKEN"]) as ctx:
        assert "supersecret" not in repr(ctx)


def test_load_secrets_file_missing(tmp_path):
    with pytest.raises(ConfigurationError, match="Secrets file not found"):
        load_secrets_file(tmp_path / "nope.yaml")
