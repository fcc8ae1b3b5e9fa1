import logging

import pytest

from alphaplex.reporting.logging import DefaultFormatter, init_logging, log_counts


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger()
    level = logger.level
    yield
    # remove the console and file handlers added by init_logging
    for handler in logger.handlers[:]:
        if isinstance(handler.formatter, DefaultFormatter):
            handler.close()
            logger.removeHandler(handler)
    logger.setLevel(level)


def test_init_logging_writes_log_file(tmp_path):
    init_logging(tmp_path)
    logger = logging.getLogger()

    # when
    logger.progress("starting quantification")
    logger.debug("not written at info level")
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / "log.txt").read_text()
    assert "PROGRESS: starting quantification" in content
    assert "not written" not in content
    assert "\x1b[" not in content


def test_init_logging_replaces_handlers(tmp_path):
    init_logging(tmp_path)
    init_logging(None)

    assert len(logging.getLogger().handlers) == 1


def test_default_formatter():
    formatter = DefaultFormatter(use_ansi=False)
    record = logging.LogRecord(
        "root", logging.WARNING, __file__, 1, "few decoys", None, None
    )

    formatted = formatter.format(record)

    assert formatted.endswith("WARNING: few decoys")


def test_default_formatter_colors_progress():
    formatter = DefaultFormatter(use_ansi=True)
    record = logging.LogRecord(
        "root", logging.PROGRESS, __file__, 1, "done", None, None
    )

    assert DefaultFormatter.green in formatter.format(record)


def test_log_counts(caplog):
    with caplog.at_level(logging.INFO):
        log_counts("remove_decoys", {"psms": 1200, "peptides": 800, "accessions": 150})

    assert "remove_decoys: 1,200 psms, 800 peptides, 150 accessions" in caplog.text
