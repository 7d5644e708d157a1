from datetime import datetime, timedelta, timezone

import pytest

from securelog_analyzer.src.models import Category, NormalizedEvent, Severity

BASE_TIME = datetime(2024, 1, 16, 10, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_event():
    def _make(
        message,
        address="10.0.0.1",
        category=Category.AUTH,
        severity=Severity.INFO,
        offset_seconds=0.0,
    ):
        return NormalizedEvent(
            timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
            source_address=address,
            category=category,
            message=message,
            severity=severity,
            raw_line=message,
        )

    return _make
