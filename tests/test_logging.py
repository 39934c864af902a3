import json
import logging

from observability.logging import ColoredFormatter, JSONFormatter, get_structured_logger, setup_logging


def make_record(**extra):
    record = logging.LogRecord("pipelines.crawler", logging.INFO, __file__, 10, "Crawl %s", ("done",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    """Test log output formats."""

    def test_json_formatter(self):
        """Structured context ends up under ``context``."""
        entry = json.loads(JSONFormatter("studyindex").format(make_record(ctx_site_id="cebraspe", ctx_pages=3)))

        assert entry["message"] == "Crawl done"
        assert entry["level"] == "INFO"
        assert entry["service"] == "studyindex"
        assert entry["context"] == {"site_id": "cebraspe", "pages": 3}

    def test_colored_formatter_without_colors(self):
        line = ColoredFormatter(use_colors=False).format(make_record(ctx_url="https://example.org"))
        assert "| INFO     | pipelines.crawler | Crawl done | url=https://example.org" in line
        assert "\033[" not in line


class TestStructuredLogger:
    """Test bound context."""

    def test_bind_merges_context(self, caplog):
        log = get_structured_logger("tests.structured", run="r1").bind(site_id="s1")

        with caplog.at_level(logging.INFO, logger="tests.structured"):
            log.info("Indexed page", chunks=4)

        record = caplog.records[-1]
        assert record.getMessage() == "Indexed page"
        assert record.ctx_run == "r1"
        assert record.ctx_site_id == "s1"
        assert record.ctx_chunks == 4


class TestSetupLogging:
    """Test root logger configuration."""

    def test_file_handler_writes_json(self, tmp_path):
        log_file = tmp_path / "logs" / "app.log"
        root = logging.getLogger()
        previous = list(root.handlers), root.level
        try:
            setup_logging(level="DEBUG", log_file=str(log_file), use_colors=False)
            logging.getLogger("tests.setup").info("hello")
            for handler in root.handlers:
                handler.flush()

            assert root.level == logging.DEBUG
            assert json.loads(log_file.read_text().splitlines()[-1])["message"] == "hello"
            assert logging.getLogger("aiohttp").level == logging.WARNING
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = previous[0]
            root.setLevel(previous[1])
