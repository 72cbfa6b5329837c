import sys
import textwrap

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def _reset_loguru():
    # configure_logging() binds the stream current at call time; CliRunner swaps it out.
    yield
    logger.remove()
    logger.add(lambda msg: sys.stderr.write(msg), level="INFO")


@pytest.fixture
def write_pipeline(tmp_path):
    def _write(body: str, name: str = "conveyor.yaml"):
        p = tmp_path / name
        p.write_text(textwrap.dedent(body), encoding="utf-8")
        return p

    return _write
