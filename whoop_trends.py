"""Multi-day trend and pattern detection over WHOOP daily records.

Records are the raw developer-API dicts (recovery, sleep or cycle), ordered
newest-first as the API returns them. Nothing here performs I/O or mutates
its input.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from whoop_format import round_half_up

MAX_WINDOW_DAYS = 30

LOW_RECOVERY = 50
LOW_SLEEP_PERFORMANCE = 70
DEEP_SLEEP_TARGET = 15  # whole percent
HIGH_STRAIN = 14
REST_STRAIN = 4
MIN_PATTERN_DAYS = 3
MIN_REST_WINDOW = 7

# Key path of each metric inside a record
METRIC_PATHS: Dict[str, Tuple[str, ...]] = {
    # recovery
    "recovery_score": ("score", "recovery_score"),
    "hrv": ("score", "hrv_rmssd_milli"),
    "resting_heart_rate": ("score", "resting_heart_rate"),
    "spo2": ("score", "spo2_percentage"),
    "skin_temp": ("score", "skin_temp_celsius"),
    # sleep
    "sleep_performance": ("score", "sleep_performance_percentage"),
    "sleep_efficiency": ("score", "sleep_efficiency_percentage"),
    "sleep_consistency": ("score", "sleep_consistency_percentage"),
    "respiratory_rate": ("score", "respiratory_rate"),
    "in_bed_milli": ("score", "stage_summary", "total_in_bed_time_milli"),
    "awake_milli": ("score", "stage_summary", "total_awake_time_milli"),
    "light_milli": ("score", "stage_summary", "total_light_sleep_time_milli"),
    "deep_milli": ("score", "stage_summary", "total_slow_wave_sleep_time_milli"),
    "rem_milli": ("score", "stage_summary", "total_rem_sleep_time_milli"),
    "disturbances": ("score", "stage_summary", "disturbance_count"),
    "sleep_cycles": ("score", "stage_summary", "sleep_cycle_count"),
    # strain (cycles)
    "strain": ("score", "strain"),
    "kilojoule": ("score", "kilojoule"),
    "average_heart_rate": ("score", "average_heart_rate"),
    "max_heart_rate": ("score", "max_heart_rate"),
}


class Domain(str, Enum):
    RECOVERY = "recovery"
    SLEEP = "sleep"
    STRAIN = "strain"


# Metric that decides whether a day counts as scored
PRIMARY_METRIC = {
    Domain.RECOVERY: "recovery_score",
    Domain.SLEEP: "sleep_performance",
    Domain.STRAIN: "strain",
}


class PatternKind(str, Enum):
    LOW_RECOVERY_DAYS = "low_recovery_days"
    CONSECUTIVE_LOW_RECOVERY = "consecutive_low_recovery"
    HRV_DECLINING = "hrv_declining"
    HRV_RISING = "hrv_rising"
    LOW_SLEEP_PERFORMANCE = "low_sleep_performance"
    DEEP_SLEEP_DEFICIT = "deep_sleep_deficit"
    HIGH_STRAIN_STREAK = "high_strain_streak"
    NO_REST_DAYS = "no_rest_days"


@dataclass(frozen=True)
class PatternFlag:
    kind: PatternKind
    message: str


@dataclass(frozen=True)
class TrendSummary:
    """Count, average and extremes of one metric over a window."""

    metric: str
    count: int
    average: Optional[float]
    minimum: Optional[float]
    maximum: Optional[float]

    @property
    def has_data(self) -> bool:
        return self.count > 0


@dataclass
class MetricSeries:
    """(date, value) samples for one metric, in input order."""

    metric: str
    samples: List[Tuple[Optional[str], Optional[float]]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def values(self) -> List[Optional[float]]:
        return [value for _, value in self.samples]

    @property
    def present(self) -> List[float]:
        return [value for _, value in self.samples if value is not None]


@dataclass
class TrendReport:
    """Everything a multi-day report needs for one domain."""

    domain: Domain
    scored_days: int = 0
    summaries: Dict[str, TrendSummary] = field(default_factory=dict)
    stage_fractions: Dict[str, Optional[float]] = field(default_factory=dict)
    patterns: List[PatternFlag] = field(default_factory=list)
    insufficient_data: bool = False


def validate_window(days: int) -> int:
    """Check a requested window length, returning it unchanged."""
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValueError(f"days must be an integer, got {days!r}")
    if days < 1 or days > MAX_WINDOW_DAYS:
        raise ValueError(f"days must be between 1 and {MAX_WINDOW_DAYS}, got {days}")
    return days


# Extraction


def as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def dig(record: Any, *keys: str) -> Any:
    """Follow nested dict keys, returning None as soon as the path breaks."""
    current = record
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def extract(record: Any, metric: str) -> Optional[float]:
    """Return a record's numeric value for a named metric, or None if absent."""
    return as_number(dig(record, *METRIC_PATHS[metric]))


def asleep_milli(record: Any) -> Optional[float]:
    """Time asleep: in-bed time minus awake time."""
    in_bed = extract(record, "in_bed_milli")
    if in_bed is None:
        return None
    return in_bed - (extract(record, "awake_milli") or 0)


def record_date(record: Any) -> Optional[str]:
    """YYYY-MM-DD the record pertains to."""
    for key in ("created_at", "start"):
        value = dig(record, key)
        if isinstance(value, str) and len(value) >= 10:
            return value[:10]
    return None


def metric_series(records: Sequence[Any], metric: str) -> MetricSeries:
    return MetricSeries(metric, [(record_date(r), extract(r, metric)) for r in records])


def scored_records(records: Sequence[Any], domain: Domain) -> List[Any]:
    """Records whose primary metric for the domain is present, order kept."""
    primary = PRIMARY_METRIC[domain]
    return [r for r in records if extract(r, primary) is not None]


# Aggregation


def count(values: Iterable[Optional[float]]) -> int:
    return sum(1 for v in values if v is not None)


def average(values: Iterable[Optional[float]]) -> Optional[float]:
    """Mean of the present values; None (not 0) when there are none."""
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def min_max(values: Iterable[Optional[float]]) -> Optional[Tuple[float, float]]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return min(present), max(present)


def sum_fraction(numerators: Iterable[Optional[float]], denominators: Iterable[Optional[float]]) -> Optional[float]:
    """Window-wide share: sum of numerators over sum of denominators.

    Missing entries contribute zero to their sum. This is not the mean of the
    per-day ratios. Returns None when the denominators add up to nothing.
    """
    total = sum(d for d in denominators if d is not None)
    if total <= 0:
        return None
    return sum(n for n in numerators if n is not None) / total


def summarize(series: MetricSeries) -> TrendSummary:
    extremes = min_max(series.values)
    return TrendSummary(
        metric=series.metric,
        count=count(series.values),
        average=average(series.values),
        minimum=extremes[0] if extremes else None,
        maximum=extremes[1] if extremes else None,
    )


# Detection


def longest_run(values: Iterable[float], predicate) -> int:
    """Length of the longest run of consecutive values matching predicate."""
    longest = current = 0
    for value in values:
        if predicate(value):
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def split_half_trend(values: Sequence[float], low: float = 0.9, high: float = 1.1) -> Optional[Tuple[str, float, float]]:
    """Compare the recent half of a newest-first series with the earlier half.

    Returns ("declining" | "rising", earlier_avg, recent_avg), or None when
    there are fewer than three samples or the change stays within the band.
    """
    if len(values) < MIN_PATTERN_DAYS:
        return None
    mid = len(values) // 2
    recent = values[:mid]
    earlier = values[mid:]
    recent_avg = sum(recent) / len(recent)
    earlier_avg = sum(earlier) / len(earlier)
    if recent_avg < earlier_avg * low:
        return "declining", earlier_avg, recent_avg
    if recent_avg > earlier_avg * high:
        return "rising", earlier_avg, recent_avg
    return None


def _summaries(records: Sequence[Any], metrics: Iterable[str]) -> Dict[str, TrendSummary]:
    return {m: summarize(metric_series(records, m)) for m in metrics}


def detect_recovery_patterns(records: Sequence[Any]) -> TrendReport:
    report = TrendReport(Domain.RECOVERY)
    scored = scored_records(records, Domain.RECOVERY)
    if not scored:
        report.insufficient_data = True
        return report

    report.scored_days = len(scored)
    report.summaries = _summaries(scored, ("recovery_score", "hrv", "resting_heart_rate", "spo2", "skin_temp"))

    scores = [extract(r, "recovery_score") for r in scored]
    low_days = sum(1 for s in scores if s < LOW_RECOVERY)
    if low_days >= MIN_PATTERN_DAYS:
        report.patterns.append(PatternFlag(
            PatternKind.LOW_RECOVERY_DAYS,
            f"Recovery below {LOW_RECOVERY}% on {low_days} of {len(scored)} days, possible overreaching.",
        ))

    # HRV is taken from every record in the window, scored or not
    hrv = metric_series(records, "hrv").present
    trend = split_half_trend(hrv)
    if trend:
        direction, earlier, recent = trend
        word = "down" if direction == "declining" else "up"
        kind = PatternKind.HRV_DECLINING if direction == "declining" else PatternKind.HRV_RISING
        report.patterns.append(PatternFlag(
            kind,
            f"HRV trending {word}: earlier avg {earlier:.1f}ms → recent {recent:.1f}ms.",
        ))

    run = longest_run(scores, lambda s: s < LOW_RECOVERY)
    if run >= MIN_PATTERN_DAYS:
        report.patterns.append(PatternFlag(
            PatternKind.CONSECUTIVE_LOW_RECOVERY,
            f"{run} consecutive days below {LOW_RECOVERY}% recovery.",
        ))
    return report


def detect_sleep_patterns(records: Sequence[Any]) -> TrendReport:
    report = TrendReport(Domain.SLEEP)
    scored = scored_records(records, Domain.SLEEP)
    if not scored:
        report.insufficient_data = True
        return report

    report.scored_days = len(scored)
    report.summaries = _summaries(scored, ("sleep_performance", "sleep_efficiency", "sleep_consistency", "respiratory_rate"))
    report.summaries["asleep_milli"] = summarize(
        MetricSeries("asleep_milli", [(record_date(r), asleep_milli(r)) for r in scored])
    )

    # Stage shares only count nights whose asleep time is known
    measured = [r for r in scored if asleep_milli(r) is not None]
    asleep = [asleep_milli(r) for r in measured]
    for stage in ("light_milli", "deep_milli", "rem_milli"):
        report.stage_fractions[stage] = sum_fraction([extract(r, stage) for r in measured], asleep)

    performances = [extract(r, "sleep_performance") for r in scored]
    low_nights = sum(1 for p in performances if p < LOW_SLEEP_PERFORMANCE)
    if low_nights >= MIN_PATTERN_DAYS:
        report.patterns.append(PatternFlag(
            PatternKind.LOW_SLEEP_PERFORMANCE,
            f"Sleep performance below {LOW_SLEEP_PERFORMANCE}% on {low_nights} of {len(scored)} nights.",
        ))

    deep = report.stage_fractions["deep_milli"]
    deep_pct = round_half_up(deep * 100) if deep is not None else None
    if deep_pct is not None and deep_pct < DEEP_SLEEP_TARGET:
        report.patterns.append(PatternFlag(
            PatternKind.DEEP_SLEEP_DEFICIT,
            f"Deep sleep averaging only {deep_pct}%, below typical 15-20% range.",
        ))
    return report


def detect_strain_patterns(records: Sequence[Any]) -> TrendReport:
    report = TrendReport(Domain.STRAIN)
    scored = scored_records(records, Domain.STRAIN)
    if not scored:
        report.insufficient_data = True
        return report

    report.scored_days = len(scored)
    report.summaries = _summaries(scored, ("strain", "kilojoule", "average_heart_rate", "max_heart_rate"))

    strains = [extract(r, "strain") for r in scored]
    run = longest_run(strains, lambda s: s > HIGH_STRAIN)
    if run >= MIN_PATTERN_DAYS:
        report.patterns.append(PatternFlag(
            PatternKind.HIGH_STRAIN_STREAK,
            f"{run} consecutive high-strain days (>{HIGH_STRAIN}). Consider active recovery.",
        ))

    rest_days = sum(1 for s in strains if s < REST_STRAIN)
    if rest_days == 0 and len(scored) >= MIN_REST_WINDOW:
        report.patterns.append(PatternFlag(PatternKind.NO_REST_DAYS, "No rest days in this period."))
    return report


DETECTORS = {
    Domain.RECOVERY: detect_recovery_patterns,
    Domain.SLEEP: detect_sleep_patterns,
    Domain.STRAIN: detect_strain_patterns,
}


def analyze(records: Sequence[Any], domain: Domain) -> TrendReport:
    """Run the summary and pattern rules for one domain."""
    return DETECTORS[Domain(domain)](records or [])
