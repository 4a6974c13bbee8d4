import io
import logging

import pytest

from tablepipe.config import load_profile
from tablepipe.logging import (
    TECHNICAL_MODULES,
    CredentialMaskingFilter,
    configure_logging,
    get_logger,
    resolve_level,
)


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    configure_logging()


def _record(msg, *args):
    return logging.LogRecord("tablepipe.test", logging.INFO, __file__, 1, msg, args, None)


class TestCredentialMasking:
    def test_masks_url_password_in_formatted_message(self):
        record = _record("Opening %s", "postgresql://etl:s3cret@db/warehouse")

        assert CredentialMaskingFilter().filter(record) is True
        assert record.getMessage() == "Opening postgresql://etl:***@db/warehouse"

    def test_leaves_other_messages_untouched(self):
        record = _record("Wrote %d rows", 10)

        CredentialMaskingFilter().filter(record)

        assert record.args == (10,)
        assert record.getMessage() == "Wrote 10 rows"

    def test_logger_output_never_contains_the_password(self):
        logger = get_logger("tablepipe.test_masking")
        stream = io.StringIO()
        logger.handlers[0].setStream(stream)
        logger.setLevel(logging.INFO)

        logger.info("Connecting with host=db;Password=hunter2")

        assert "hunter2" not in stream.getvalue()
        assert "Password=***" in stream.getvalue()


class TestLevels:
    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({}, logging.INFO),
            ({"verbose": True}, logging.DEBUG),
            ({"quiet": True}, logging.WARNING),
            ({"quiet": True, "level": "error"}, logging.ERROR),
            ({"level": "DEBUG"}, logging.DEBUG),
        ],
    )
    def test_resolve_level(self, kwargs, expected):
        assert resolve_level(**kwargs) == expected

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="Valid levels"):
            resolve_level(level="loud")

    def test_dialect_tracing_only_in_verbose_mode(self):
        configure_logging(verbose=True)
        assert logging.getLogger(TECHNICAL_MODULES[0]).level == logging.DEBUG

        configure_logging()
        assert logging.getLogger(TECHNICAL_MODULES[0]).level == logging.WARNING

        configure_logging(level="error")
        assert logging.getLogger(TECHNICAL_MODULES[0]).level == logging.ERROR

    def test_profile_level_is_applied_exactly(self, tmp_path):
        path = tmp_path / "job.yml"
        path.write_text("log_level: error\n")

        load_profile(str(path))

        assert logging.getLogger().level == logging.ERROR
