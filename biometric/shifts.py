"""
Shift-date assignment.

Every shift-date D owns one contiguous 24 hour window [open_D, open_D + 24h),
so consecutive windows never overlap and never leave a gap. A punch belongs
to the shift-date whose window contains it.

  regular    time_in < time_out, starts at/after the graveyard cutoff.
             Window is the calendar day.
  graveyard  time_in < time_out, starts before the cutoff (or typed so).
             The shift keyed to D is worked in the early hours of D+1.
  overnight  time_out <= time_in. Starts on D, ends on D+1.

For graveyard and overnight shifts the window opens ``early_arrival_minutes``
before the scheduled start, clamped to the off-duty gap between shifts.
"""
from datetime import datetime, date, time, timedelta
from typing import Optional, Tuple

REGULAR = "regular"
GRAVEYARD = "graveyard"
OVERNIGHT = "overnight"

MINUTES_PER_DAY = 24 * 60


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def parse_cutoff(value) -> time:
    if isinstance(value, time):
        return value
    return datetime.strptime(str(value).strip(), "%H:%M").time()


class ShiftAssigner:

    def __init__(self, early_arrival_minutes: int = 240, graveyard_cutoff="05:00"):
        self.early_arrival_minutes = early_arrival_minutes
        self.graveyard_cutoff = parse_cutoff(graveyard_cutoff)

    @classmethod
    def from_config(cls, config):
        return cls(
            early_arrival_minutes=config.get("EARLY_ARRIVAL_MINUTES", 240),
            graveyard_cutoff=config.get("GRAVEYARD_START_CUTOFF", "05:00"),
        )

    # -----------------------------
    # Schedule geometry
    # -----------------------------
    def classify(self, schedule) -> str:
        t_in, t_out = schedule.scheduled_time_in, schedule.scheduled_time_out
        if _minutes(t_out) <= _minutes(t_in):
            return OVERNIGHT
        if schedule.shift_type == GRAVEYARD or t_in < self.graveyard_cutoff:
            return GRAVEYARD
        return REGULAR

    @staticmethod
    def duration_minutes(schedule) -> int:
        diff = (_minutes(schedule.scheduled_time_out) - _minutes(schedule.scheduled_time_in)) % MINUTES_PER_DAY
        return diff or MINUTES_PER_DAY

    def _offset_days(self, kind: str) -> int:
        return 1 if kind == GRAVEYARD else 0

    def _early_window(self, schedule, kind: str) -> int:
        if kind == REGULAR:
            return _minutes(schedule.scheduled_time_in)
        gap = MINUTES_PER_DAY - self.duration_minutes(schedule)
        return max(0, min(self.early_arrival_minutes, gap))

    def scheduled_bounds(self, schedule, shift_date: date) -> Tuple[datetime, datetime]:
        kind = self.classify(schedule)
        start = datetime.combine(shift_date + timedelta(days=self._offset_days(kind)), schedule.scheduled_time_in)
        end = start + timedelta(minutes=self.duration_minutes(schedule))
        return start, end

    def window(self, schedule, shift_date: date) -> Tuple[datetime, datetime]:
        kind = self.classify(schedule)
        start, _ = self.scheduled_bounds(schedule, shift_date)
        opens = start - timedelta(minutes=self._early_window(schedule, kind))
        return opens, opens + timedelta(days=1)

    # -----------------------------
    # Assignment
    # -----------------------------
    def shift_date_for(self, punched_at: datetime, schedule) -> date:
        """Shift-date whose window contains the punch, workday or not."""
        kind = self.classify(schedule)
        anchor = (
            punched_at
            - timedelta(minutes=_minutes(schedule.scheduled_time_in))
            - timedelta(days=self._offset_days(kind))
            + timedelta(minutes=self._early_window(schedule, kind))
        )
        return anchor.date()

    def assign_shift_date(self, punched_at: datetime, schedule) -> Optional[date]:
        """
        Returns the shift-date a punch belongs to, or None when that date is
        not one of the schedule's work days.
        """
        shift_date = self.shift_date_for(punched_at, schedule)
        if not schedule.works_on(shift_date):
            return None
        return shift_date
