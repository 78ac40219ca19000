from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from table_entity_store.utils.timezone import (
    ensure_timezone_aware,
    format_for_storage,
    parse_from_storage,
    to_user_timezone,
    to_utc,
)


class TestTimezoneUtilities:
    """Test cases for timezone utilities."""

    def test_to_utc_conversion(self):
        """Test conversion to UTC."""
        ny_time = datetime(2024, 1, 1, 10, 0, tzinfo=ZoneInfo('America/New_York'))
        utc_time = to_utc(ny_time)

        assert utc_time.tzinfo == timezone.utc
        assert utc_time.hour == 15

    def test_to_utc_naive_assumed_utc(self):
        assert to_utc(datetime(2024, 1, 1, 10, 0)).tzinfo == timezone.utc
        assert to_utc(None) is None

    def test_ensure_timezone_aware(self):
        naive = datetime(2024, 1, 1, 10, 0)

        assert ensure_timezone_aware(naive).tzinfo == timezone.utc
        assert ensure_timezone_aware(naive, "Europe/Berlin").tzinfo == ZoneInfo("Europe/Berlin")

        aware = datetime(2024, 1, 1, 10, 0, tzinfo=ZoneInfo("Asia/Tokyo"))
        assert ensure_timezone_aware(aware, "Europe/Berlin") is aware

    def test_format_for_storage_uses_default_timezone_for_naive(self):
        naive = datetime(2024, 7, 1, 12, 0)
        assert format_for_storage(naive, "Europe/Berlin") == "2024-07-01T10:00:00+00:00"

    def test_parse_from_storage_converts_to_user_timezone(self):
        parsed = parse_from_storage("2024-07-01T10:00:00Z", "America/New_York")

        assert parsed.tzinfo == ZoneInfo("America/New_York")
        assert parsed.hour == 6

    def test_to_user_timezone_without_zone_uses_local(self):
        dt = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        local = to_user_timezone(dt)

        assert local.tzinfo is not None
        assert local == dt
