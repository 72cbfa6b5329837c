import pytest

from conveyor.util.paths import copy_template, ensure_dir, read_template, safe_filename


def test_safe_filename():
    assert safe_filename("foo") == "foo"
    assert safe_filename("foo bar") == "foo_bar"
    assert safe_filename("foo/bar") == "foo_bar"
    assert safe_filename("../../etc/passwd") == "etc_passwd"
    assert safe_filename("") == "item"  # Default
    assert safe_filename("", default="default") == "default"


def test_ensure_dir(tmp_path):
    d = tmp_path / "subdir" / "nested"
    assert not d.exists()
    ensure_dir(d)
    assert d.is_dir()


def test_read_template():
    assert "steps:" in read_template("conveyor.yaml")
    with pytest.raises(FileNotFoundError):
        read_template("nope.yaml")


def test_copy_template(tmp_path):
    dest = tmp_path / "ci" / "conveyor.yaml"

    assert copy_template("conveyor.yaml", dest) is True
    original = dest.read_text(encoding="utf-8")

    # Existing files are kept unless overwrite is set
    dest.write_text("custom", encoding="utf-8")
    assert copy_template("conveyor.yaml", dest) is False
    assert dest.read_text(encoding="utf-8") == "custom"

    assert copy_template("conveyor.yaml", dest, overwrite=True) is True
    assert dest.read_text(encoding="utf-8") == original
