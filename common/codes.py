"""Short unique code generation shared by barcodes and customer accounts.

Codes are minted without a central sequence. Every round works against a
snapshot of the codes already in use; callers pass a callable so each round
re-reads the latest persisted state. `mint_unique_code` additionally treats a
unique-index violation on insert as a collision and starts over, which is what
finally settles races between concurrent requests.
"""

from __future__ import annotations

import logging
import random
import re
import time
from collections.abc import Callable, Iterable
from typing import Any, TypeVar, Union

from django.conf import settings
from django.db import IntegrityError, transaction

from common.errors import ExhaustedAttemptsError, OperationTimeoutError

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
CUSTOMER_CODE_FLOOR = 99999
AUTO_GENERATE = "AUTO_GENERATE"

_NUMERIC_CODE = re.compile(r"^\d{6}$")

ExistingCodes = Union[Iterable[str], Callable[[], Iterable[str]]]
T = TypeVar("T")


class Deadline:
    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(self.expires_at - self.clock(), 0.0)

    def check(self) -> None:
        if self.expires_at is not None and self.clock() >= self.expires_at:
            raise OperationTimeoutError()


class CodeFormat:
    """Candidate step of code generation; subclasses only decide what to try next."""

    name = "code"
    length = CODE_LENGTH

    def candidate(self, existing: set[str] | frozenset[str], attempt: int) -> str:
        raise NotImplementedError


class RandomCodeFormat(CodeFormat):
    """Random 6-digit codes mixed with the sub-second clock, used for barcodes."""

    name = "barcode"

    def __init__(self, length: int = CODE_LENGTH, rng: random.Random | None = None, clock: Callable[[], float] = time.time):
        self.length = length
        self.rng = rng or random.Random()
        self.clock = clock

    def candidate(self, existing, attempt):
        low = 10 ** (self.length - 1)
        high = 10**self.length - 1
        time_component = int(self.clock() * 1000) % 1000
        number = self.rng.randint(low, high) + time_component
        return str(number)[-self.length :].zfill(self.length)


class SequentialCodeFormat(CodeFormat):
    """Next integer above every clean numeric code, used for customer accounts."""

    name = "customer"

    def __init__(self, floor: int = CUSTOMER_CODE_FLOOR, length: int = CODE_LENGTH):
        self.floor = floor
        self.length = length

    def highest(self, existing: Iterable[str]) -> int:
        highest = self.floor
        for code in existing:
            if isinstance(code, str) and len(code) == self.length and _NUMERIC_CODE.match(code):
                highest = max(highest, int(code))
        return highest

    def candidate(self, existing, attempt):
        next_value = self.highest(existing) + 1
        if next_value >= 10**self.length:
            raise ExhaustedAttemptsError(f"No {self.length}-digit {self.name} codes are left.")
        return str(next_value).zfill(self.length)


BARCODE_FORMAT = RandomCodeFormat()
CUSTOMER_FORMAT = SequentialCodeFormat()


def _snapshot(existing_codes: ExistingCodes) -> set[str] | frozenset[str]:
    codes = existing_codes() if callable(existing_codes) else existing_codes
    if isinstance(codes, (set, frozenset)):
        return codes
    return set(codes)


def _setting(name: str, default: Any) -> Any:
    return getattr(settings, name, default)


def _backoff_seconds() -> float:
    low = _setting("CODE_BACKOFF_MIN_MS", 50)
    high = _setting("CODE_BACKOFF_MAX_MS", 150)
    return random.uniform(low, high) / 1000


def generate_unique_code(
    existing_codes: ExistingCodes,
    code_format: CodeFormat | None = None,
    *,
    max_attempts: int | None = None,
    max_retries: int | None = None,
    deadline: Deadline | None = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> str:
    """Return a code that is not in `existing_codes`.

    Up to `max_retries` rounds of `max_attempts` candidates each; the snapshot
    is re-read at the start of every round and rounds are separated by a short
    random backoff. Raises `ExhaustedAttemptsError` when every round fails and
    `OperationTimeoutError` when `deadline` passes first.
    """
    code_format = code_format or BARCODE_FORMAT
    max_attempts = max_attempts or _setting("CODE_MAX_ATTEMPTS", 1000)
    max_retries = max_retries or _setting("CODE_MAX_RETRIES", 3)

    for round_number in range(1, max_retries + 1):
        existing = _snapshot(existing_codes)
        for attempt in range(max_attempts):
            if deadline is not None:
                deadline.check()
            code = code_format.candidate(existing, attempt)
            if code not in existing:
                return code

        logger.warning(
            "code_generation_round_exhausted",
            extra={"code_format": code_format.name, "attempt": round_number, "existing_count": len(existing)},
        )
        if round_number < max_retries:
            if deadline is not None:
                deadline.check()
            sleep(_backoff_seconds())

    raise ExhaustedAttemptsError(
        f"Unable to generate a unique {code_format.name} code after {max_retries} rounds of {max_attempts} attempts."
    )


def mint_unique_code(
    create: Callable[[str], T],
    existing_codes: ExistingCodes,
    code_format: CodeFormat | None = None,
    *,
    max_conflicts: int | None = None,
    **options: Any,
) -> T:
    """Generate a code and persist it through `create(code)`.

    `create` runs inside a savepoint; an `IntegrityError` means another request
    stored the same code first, so generation starts again from a fresh
    snapshot. Give `existing_codes` as a callable for that to make progress.
    """
    code_format = code_format or BARCODE_FORMAT
    max_conflicts = max_conflicts or _setting("CODE_MAX_RETRIES", 3)

    for conflict in range(1, max_conflicts + 1):
        code = generate_unique_code(existing_codes, code_format, **options)
        try:
            with transaction.atomic():
                return create(code)
        except IntegrityError:
            logger.warning(
                "code_collision_retry",
                extra={"code_format": code_format.name, "code": code, "attempt": conflict},
            )

    raise ExhaustedAttemptsError(
        f"Unable to store a unique {code_format.name} code after {max_conflicts} conflicting inserts."
    )


def is_auto_generate(code: str | None) -> bool:
    return code is None or not str(code).strip() or str(code).strip() == AUTO_GENERATE
