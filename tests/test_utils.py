"""Tests for Arabic text helpers and cancellation tokens."""

import asyncio
import threading
import time

import pytest

from gradesheet_ocr.exceptions import CancellationError
from gradesheet_ocr.utils.arabic import (
    contains_arabic,
    count_letters,
    is_mostly_arabic,
    normalize_digits,
    normalize_name,
    strip_diacritics,
    unify_letters,
)
from gradesheet_ocr.utils.cancellation import CancellationToken


class TestArabicHelpers:
    """Tests for digit, letter and name normalization."""

    def test_normalize_digits(self) -> None:
        assert normalize_digits("١٢٫٥") == "12٫5"
        assert normalize_digits("۱۵") == "15"

    def test_strip_diacritics(self) -> None:
        assert strip_diacritics("مُحَمَّد") == "محمد"
        assert strip_diacritics("محـــمد") == "محمد"

    def test_unify_letters(self) -> None:
        assert unify_letters("أسامة") == "اسامه"
        assert unify_letters("مصطفى") == "مصطفي"

    def test_normalize_name(self) -> None:
        assert normalize_name("  إبراهيم   الفاسي ") == normalize_name("ابراهيم الفاسى")
        assert normalize_name("Ahmed-Ali") == "ahmed ali"
        assert normalize_name("") == ""

    def test_script_detection(self) -> None:
        assert contains_arabic("Ahmed أحمد")
        assert not contains_arabic("Ahmed")
        assert is_mostly_arabic("أحمد A")
        assert not is_mostly_arabic("Ahmed أ")
        assert count_letters("A1 ب") == 2


class TestCancellationToken:
    """Tests for cooperative cancellation."""

    def test_raise_if_cancelled(self) -> None:
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(CancellationError):
            token.raise_if_cancelled()

    def test_run_returns_result(self) -> None:
        async def work() -> int:
            await asyncio.sleep(0)
            return 42

        assert asyncio.run(CancellationToken().run(work())) == 42

    def test_run_aborts_in_flight_work(self) -> None:
        finished: list[bool] = []

        async def slow() -> None:
            await asyncio.sleep(30)
            finished.append(True)

        async def scenario() -> None:
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.01, token.cancel)
            await token.run(slow())

        with pytest.raises(CancellationError):
            asyncio.run(scenario())
        assert finished == []

    def test_run_propagates_errors(self) -> None:
        async def broken() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError):
            asyncio.run(CancellationToken().run(broken()))

    def test_sleep_interrupted(self) -> None:
        async def scenario() -> None:
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.01, token.cancel)
            await token.sleep(30)

        with pytest.raises(CancellationError):
            asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    def test_sleep_completes(self) -> None:
        asyncio.run(CancellationToken().sleep(0))

    def test_cancel_from_another_thread_aborts_in_flight_work(self) -> None:
        token = CancellationToken()

        async def scenario() -> None:
            threading.Timer(0.05, token.cancel).start()
            await token.run(asyncio.sleep(5))

        started = time.monotonic()
        with pytest.raises(CancellationError):
            asyncio.run(scenario())
        assert time.monotonic() - started < 2

    def test_cancel_from_another_thread_interrupts_sleep(self) -> None:
        token = CancellationToken()

        async def scenario() -> None:
            threading.Timer(0.05, token.cancel).start()
            await token.sleep(5)

        started = time.monotonic()
        with pytest.raises(CancellationError):
            asyncio.run(scenario())
        assert time.monotonic() - started < 2
