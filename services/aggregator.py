"""Aggregation logic for sensor readings."""

from __future__ import annotations

import datetime as dt
from datetime import tzinfo
from typing import Dict, Iterable, List

from models.records import DailyAverage, DailyBucket, Reading


class DailyAggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def compute_daily_averages(
        self, readings: Iterable[Reading], tz: tzinfo
    ) -> List[DailyAverage]:
        """Group readings by calendar day in ``tz`` and average each group.

        Naive timestamps are wall-clock time in ``tz``. The result is ordered newest day
        first and never contains a day without readings.
        """
        buckets: Dict[dt.date, DailyBucket] = {}

        for reading in readings:
            observed_at = reading.observed_at
            if observed_at.tzinfo is None:
                observed_at = observed_at.replace(tzinfo=tz)
            day = observed_at.astimezone(tz).date()

            bucket = buckets.get(day)
            if bucket is None:
                bucket = buckets[day] = DailyBucket(date=day)
            bucket.add(reading)

        return [
            DailyAverage(
                date=bucket.date,
                avg_temperature=bucket.sum_temperature / bucket.count,
                avg_humidity=bucket.sum_humidity / bucket.count,
                count=bucket.count,
            )
            for bucket in sorted(buckets.values(), key=lambda b: b.date, reverse=True)
        ]
