"""Tests for logger setup."""

from loguru import logger

from hybridmem.core.utils import init_logger


def read_log(log_dir) -> str:
    files = list(log_dir.glob("hybridmem_*.log"))
    assert len(files) == 1
    return files[0].read_text(encoding="utf-8")


def test_file_sink_receives_records(tmp_path):
    log_dir = tmp_path / "logs"
    handler_ids = init_logger(str(log_dir), level="debug", log_to_console=False)
    try:
        logger.debug("index opened")
        # Read before removal: closing the sink compresses the file
        text = read_log(log_dir)
    finally:
        for handler_id in handler_ids:
            logger.remove(handler_id)

    assert "index opened" in text


def test_level_from_environment_and_filter(tmp_path, monkeypatch):
    monkeypatch.setenv("HYBRIDMEM_LOG_LEVEL", "warning")
    log_dir = tmp_path / "logs"
    handler_ids = init_logger(str(log_dir), log_to_console=False, only_hybridmem=True)
    try:
        # Emitted from the tests module, so filtered out
        logger.warning("outside record")
        logger.info("too quiet")
        text = read_log(log_dir)
    finally:
        for handler_id in handler_ids:
            logger.remove(handler_id)

    assert "outside record" not in text
    assert "too quiet" not in text


def test_console_only_has_no_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    handler_ids = init_logger(None, log_to_console=True)
    for handler_id in handler_ids:
        logger.remove(handler_id)

    assert len(handler_ids) == 1
    assert list(tmp_path.iterdir()) == []
