from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, timedelta


@dataclass(frozen=True)
class DateSet:
    """
    A single calendar date or an inclusive date range.

    Leave requests and swaps both walk their dates through this type.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("end date must be on or after start date")

    @classmethod
    def single(cls, day: date) -> "DateSet":
        return cls(day, day)

    @classmethod
    def from_fields(
        cls,
        day: date | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> "DateSet":
        if day is not None:
            if start is not None or end is not None:
                raise ValueError(
                    "give either a single date or a date range, not both"
                )
            return cls.single(day)
        if start is None or end is None:
            raise ValueError("a date or a complete start/end range is required")
        return cls(start, end)

    @property
    def is_single(self) -> bool:
        return self.start == self.end

    def overlaps(self, other: "DateSet") -> bool:
        return self.start <= other.end and other.start <= self.end

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end

    def __iter__(self) -> Iterator[date]:
        day = self.start
        while day <= self.end:
            yield day
            day += timedelta(days=1)

    def __len__(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        if self.is_single:
            return self.start.isoformat()
        return f"{self.start.isoformat()} to {self.end.isoformat()}"
