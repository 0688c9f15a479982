import io
import json
import logging
import unittest

from qr_generator.logging_config import LOGGER_NAME, parse_level, setup_logging


class ParseLevelTests(unittest.TestCase):
    def test_maps_level_names(self) -> None:
        self.assertEqual(parse_level("debug"), logging.DEBUG)
        self.assertEqual(parse_level("warn"), logging.WARNING)
        self.assertEqual(parse_level("ERROR"), logging.ERROR)
        self.assertEqual(parse_level("dpanic"), logging.CRITICAL)
        self.assertEqual(parse_level("fatal"), logging.CRITICAL)

    def test_unknown_or_missing_falls_back_to_info(self) -> None:
        self.assertEqual(parse_level("verbose"), logging.INFO)
        self.assertEqual(parse_level(""), logging.INFO)
        self.assertEqual(parse_level(None), logging.INFO)


class SetupLoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        logger = logging.getLogger(LOGGER_NAME)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)

    def test_prod_writes_json_lines_with_fields(self) -> None:
        stream = io.StringIO()
        logger = setup_logging("prod", "info", stream=stream)

        logger.info("Starting server", extra={"fields": {"port": 8080}})

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        self.assertEqual(lines[0]["msg"], "Logger initialized")
        self.assertEqual(lines[1]["msg"], "Starting server")
        self.assertEqual(lines[1]["level"], "INFO")
        self.assertEqual(lines[1]["port"], 8080)
        self.assertTrue(lines[1]["ts"].endswith("Z"))

    def test_dev_writes_human_lines(self) -> None:
        stream = io.StringIO()
        logger = setup_logging("dev", "debug", stream=stream)

        logger.debug("Reading request body", extra={"fields": {"max_size": 16}})

        last = stream.getvalue().splitlines()[-1]
        self.assertIn("DEBUG", last)
        self.assertIn("Reading request body max_size=16", last)
        self.assertNotIn("\033[", last)

    def test_level_filters_records(self) -> None:
        stream = io.StringIO()
        logger = setup_logging("prod", "warn", stream=stream)

        logger.info("hidden")
        logger.warning("shown")

        messages = [json.loads(line)["msg"] for line in stream.getvalue().splitlines()]
        self.assertEqual(messages, ["shown"])

    def test_exception_info_is_included(self) -> None:
        stream = io.StringIO()
        logger = setup_logging("prod", "info", stream=stream)

        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("Failed to encode QR code", exc_info=True)

        entry = json.loads(stream.getvalue().splitlines()[-1])
        self.assertIn("ValueError: boom", entry["exc"])

    def test_repeated_setup_does_not_duplicate_handlers(self) -> None:
        setup_logging("prod", "info", stream=io.StringIO())
        logger = setup_logging("prod", "info", stream=io.StringIO())

        owned = [h for h in logger.handlers if getattr(h, "_qr_generator_handler", False)]
        self.assertEqual(len(owned), 1)
        self.assertFalse(logger.propagate)


if __name__ == "__main__":
    unittest.main()
