import random
from unittest.mock import Mock

from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.exceptions import NotFound
from rest_framework.test import APIClient

from common.codes import (
    CUSTOMER_FORMAT,
    Deadline,
    RandomCodeFormat,
    SequentialCodeFormat,
    generate_unique_code,
    is_auto_generate,
    mint_unique_code,
)
from common.errors import ExhaustedAttemptsError, OperationTimeoutError, TemplateValidationError
from common.exceptions import custom_exception_handler


class FixedFormat(RandomCodeFormat):
    def __init__(self, code):
        super().__init__()
        self.code = code

    def candidate(self, existing, attempt):
        return self.code


class RandomCodeFormatTests(SimpleTestCase):
    def test_candidates_are_six_digits(self):
        code_format = RandomCodeFormat(rng=random.Random(7))
        for attempt in range(500):
            self.assertRegex(code_format.candidate(set(), attempt), r"^\d{6}$")

    def test_overflow_keeps_last_six_digits(self):
        rng = Mock()
        rng.randint.return_value = 999999
        code_format = RandomCodeFormat(rng=rng, clock=lambda: 1.25)

        self.assertEqual(code_format.candidate(set(), 0), "000249")

    def test_ten_thousand_feedback_calls_stay_unique(self):
        existing = set()
        code_format = RandomCodeFormat(rng=random.Random(2024))
        for _ in range(10_000):
            code = generate_unique_code(existing, code_format, sleep=lambda seconds: None)
            self.assertNotIn(code, existing)
            existing.add(code)
        self.assertEqual(len(existing), 10_000)


class SequentialCodeFormatTests(SimpleTestCase):
    def test_next_code_follows_highest_clean_code(self):
        code = generate_unique_code({"100005", "100010", "ABC123", "12345", "0100020"}, CUSTOMER_FORMAT)
        self.assertEqual(code, "100011")

    def test_empty_collection_starts_at_floor(self):
        self.assertEqual(generate_unique_code(set(), CUSTOMER_FORMAT), "100000")

    def test_low_numeric_codes_do_not_lower_the_floor(self):
        self.assertEqual(generate_unique_code({"000123"}, CUSTOMER_FORMAT), "100000")

    def test_code_space_exhaustion(self):
        with self.assertRaises(ExhaustedAttemptsError):
            generate_unique_code({"999999"}, SequentialCodeFormat())


class GenerateUniqueCodeTests(SimpleTestCase):
    def test_exhaustion_after_every_round(self):
        sleep = Mock()

        with self.assertRaises(ExhaustedAttemptsError):
            generate_unique_code({"123456"}, FixedFormat("123456"), max_attempts=5, max_retries=3, sleep=sleep)

        self.assertEqual(sleep.call_count, 2)
        for call in sleep.call_args_list:
            self.assertTrue(0.05 <= call.args[0] <= 0.15)

    def test_snapshot_is_reread_each_round(self):
        snapshots = [{"123456"}, set()]
        source = Mock(side_effect=lambda: snapshots.pop(0))

        code = generate_unique_code(source, FixedFormat("123456"), max_attempts=3, max_retries=3, sleep=lambda seconds: None)

        self.assertEqual(code, "123456")
        self.assertEqual(source.call_count, 2)

    @override_settings(CODE_MAX_ATTEMPTS=2, CODE_MAX_RETRIES=1)
    def test_limits_come_from_settings(self):
        code_format = FixedFormat("111111")
        code_format.candidate = Mock(return_value="111111")

        with self.assertRaises(ExhaustedAttemptsError):
            generate_unique_code({"111111"}, code_format)

        self.assertEqual(code_format.candidate.call_count, 2)

    def test_expired_deadline_raises_timeout(self):
        ticks = iter([0.0, 5.0])
        deadline = Deadline(1.0, clock=lambda: next(ticks))

        with self.assertRaises(OperationTimeoutError):
            generate_unique_code(set(), deadline=deadline)

    def test_auto_generate_sentinel(self):
        self.assertTrue(is_auto_generate(None))
        self.assertTrue(is_auto_generate("  "))
        self.assertTrue(is_auto_generate("AUTO_GENERATE"))
        self.assertFalse(is_auto_generate("100001"))


class MintUniqueCodeTests(TestCase):
    def test_integrity_error_triggers_regeneration(self):
        stored = []

        def create(code):
            if not stored:
                stored.append(None)
                raise IntegrityError("duplicate key")
            stored.append(code)
            return code

        code = mint_unique_code(create, set, RandomCodeFormat(rng=random.Random(1)))

        self.assertEqual(stored[-1], code)
        self.assertEqual(len(stored), 2)

    def test_repeated_conflicts_exhaust(self):
        create = Mock(side_effect=IntegrityError("duplicate key"))

        with self.assertRaises(ExhaustedAttemptsError):
            mint_unique_code(create, set, max_conflicts=4)

        self.assertEqual(create.call_count, 4)


class ExceptionHandlerTests(SimpleTestCase):
    def test_domain_error_uses_envelope(self):
        response = custom_exception_handler(TemplateValidationError(["Template name is required"]), {})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.data,
            {
                "code": "invalid_label_template",
                "message": "Label template is invalid.",
                "errors": ["Template name is required"],
                "status": 400,
            },
        )

    def test_drf_error_uses_envelope(self):
        response = custom_exception_handler(NotFound(), {})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "not_found")
        self.assertIsNone(response.data["errors"])

    def test_unhandled_error_is_logged_and_hidden(self):
        with self.assertLogs("common.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["message"], "An unexpected error occurred.")


class RequestLogMiddlewareTests(TestCase):
    def test_request_id_is_echoed(self):
        client = APIClient()

        with self.assertLogs("api.request", level="INFO") as cm:
            response = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-abc")

        self.assertEqual(response["X-Request-ID"], "req-abc")
        self.assertTrue(any("request_completed" in line for line in cm.output))

    def test_malformed_request_id_is_replaced(self):
        client = APIClient()

        response = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="x" * 200)

        self.assertNotEqual(response["X-Request-ID"], "x" * 200)
        self.assertEqual(len(response["X-Request-ID"]), 36)

    def test_client_errors_log_as_warning(self):
        client = APIClient()

        with self.assertLogs("api.request", level="WARNING") as cm:
            response = client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 401)
        self.assertTrue(any("request_completed" in line for line in cm.output))
