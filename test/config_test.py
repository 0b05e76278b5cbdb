import pytest

from chat_sync.app.config import Settings
from chat_sync.app.time_utils import MonotonicClock


def test_settings_defaults():
    settings = Settings(environment='dev')

    assert settings.environment == 'DEV'
    assert settings.store_backend == 'memory'
    assert settings.counter_max_attempts == 3
    assert settings.aws_s3_base_url == f"https://{settings.aws_s3_bucket_name}.s3.{settings.aws_region}.amazonaws.com"


@pytest.mark.parametrize('overrides', [
    {'environment': 'staging'},
    {'store_backend': 'sqlite'},
    {'counter_max_attempts': 0},
    {'log_level': 'LOUD'},
])
def test_invalid_settings(overrides):
    with pytest.raises(ValueError):
        Settings(**overrides)


def test_clock_never_goes_backwards():
    readings = iter([100, 105, 90, 110])
    clock = MonotonicClock(lambda: next(readings))

    assert [clock.now() for _ in range(4)] == [100, 105, 105, 110]
