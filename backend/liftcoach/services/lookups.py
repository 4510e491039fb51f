"""Weekly and daily lookup tables.

A weekly lookup maps a week number to per-set percentages/reps or to a
percentage modifier; a daily lookup maps a day identifier to a modifier.
LookupContext combines the two for one (week, day) pair.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class IntensityLevel(str, Enum):
    HEAVY = "HEAVY"
    MEDIUM = "MEDIUM"
    LIGHT = "LIGHT"


class WeeklyLookupEntry(BaseModel):
    week_number: int = Field(..., ge=1)
    percentages: list[float] = Field(default_factory=list)
    reps: list[int] = Field(default_factory=list)
    percentage_modifier: Optional[float] = Field(None, gt=0)

    @model_validator(mode="after")
    def _check_lengths(self) -> "WeeklyLookupEntry":
        if self.reps and self.percentages and len(self.reps) != len(self.percentages):
            raise ValueError("percentages and reps must have the same length")
        return self


class DailyLookupEntry(BaseModel):
    day_identifier: str = Field(..., min_length=1)
    percentage_modifier: float = Field(..., ge=0)
    intensity_level: Optional[IntensityLevel] = None


class WeeklyLookupTable(BaseModel):
    entries: list[WeeklyLookupEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_weeks(self) -> "WeeklyLookupTable":
        weeks = [e.week_number for e in self.entries]
        if len(weeks) != len(set(weeks)):
            raise ValueError("week_number must be unique within a weekly lookup")
        return self

    def entry_for(self, week_number: int) -> Optional[WeeklyLookupEntry]:
        for entry in self.entries:
            if entry.week_number == week_number:
                return entry
        return None


class DailyLookupTable(BaseModel):
    entries: list[DailyLookupEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_days(self) -> "DailyLookupTable":
        days = [e.day_identifier.lower() for e in self.entries]
        if len(days) != len(set(days)):
            raise ValueError("day_identifier must be unique within a daily lookup")
        return self

    def entry_for(self, day_slug: str) -> Optional[DailyLookupEntry]:
        wanted = day_slug.lower()
        for entry in self.entries:
            if entry.day_identifier.lower() == wanted:
                return entry
        return None


@dataclass
class LookupContext:
    """Week/day position plus the lookup tables that apply to it."""

    week_number: int
    day_slug: Optional[str] = None
    weekly: Optional[WeeklyLookupTable] = None
    daily: Optional[DailyLookupTable] = None

    def weekly_entry(self) -> Optional[WeeklyLookupEntry]:
        if self.weekly is None:
            return None
        return self.weekly.entry_for(self.week_number)

    def daily_entry(self) -> Optional[DailyLookupEntry]:
        if self.daily is None or not self.day_slug:
            return None
        return self.daily.entry_for(self.day_slug)

    def set_count(self) -> int:
        """Number of per-set percentages the weekly entry defines (0 if none)."""
        entry = self.weekly_entry()
        return len(entry.percentages) if entry else 0

    def apply_modifiers(self, percentage: float, set_number: Optional[int] = None) -> float:
        """Apply weekly then daily adjustments to a base percentage.

        Args:
            percentage: Base percentage from the strategy.
            set_number: 1-based set number, used to pick a per-set percentage.

        Returns:
            Effective percentage.
        """
        result = percentage

        weekly = self.weekly_entry()
        if weekly is not None:
            if weekly.percentages and set_number is not None and 1 <= set_number <= len(weekly.percentages):
                result = weekly.percentages[set_number - 1]
            elif weekly.percentage_modifier:
                result = result * weekly.percentage_modifier / 100

        daily = self.daily_entry()
        if daily is not None and daily.percentage_modifier:
            result = result * daily.percentage_modifier / 100

        return result

    def reps_for_set(self, set_number: int) -> Optional[int]:
        weekly = self.weekly_entry()
        if weekly is None or not weekly.reps:
            return None
        if 1 <= set_number <= len(weekly.reps):
            return weekly.reps[set_number - 1]
        return None
