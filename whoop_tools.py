"""Report builders behind the WHOOP MCP tools.

Each builder takes a WhoopClient, gathers what it needs from the developer
and internal APIs, and renders a compact text report.
"""

import asyncio
import calendar
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, List, Optional

import httpx
import pytz

from whoop_client import WhoopAPIError, WhoopClient
from whoop_format import (
    PLACEHOLDER,
    kcal,
    ms_to_hours,
    ms_to_hours_decimal,
    num,
    parse_iso,
    pct,
    percent_of,
    recovery_color,
    recovery_emoji,
    round_half_up,
    short_date,
    today,
)
from whoop_trends import (
    Domain,
    TrendReport,
    analyze,
    as_number,
    asleep_milli,
    dig,
    extract,
    scored_records,
    validate_window,
)

logger = logging.getLogger(__name__)

DETAIL_LEVELS = ("summary", "full")
STRAIN_SCALE = 21


# Input handling


def resolve_date(date: Optional[str], client: WhoopClient) -> str:
    """Validate a YYYY-MM-DD date, defaulting to today in the configured timezone."""
    if not date:
        return today(client.config.timezone)
    datetime.strptime(date, "%Y-%m-%d")
    return date


def end_of_day(date: Optional[str]) -> Optional[str]:
    """Upper bound for developer queries when the caller named a date."""
    return f"{date}T23:59:59.999Z" if date else None


def resolve_detail(detail: Optional[str]) -> str:
    detail = detail or "summary"
    if detail not in DETAIL_LEVELS:
        raise ValueError(f"detail must be one of {', '.join(DETAIL_LEVELS)}")
    return detail


async def fetch_optional(awaitable: Awaitable[Any], what: str) -> Any:
    """Await a supplementary fetch, treating any upstream failure as absent."""
    try:
        return await awaitable
    except (WhoopAPIError, httpx.HTTPError, ValueError) as e:
        logger.warning(f"Optional {what} fetch failed: {e}")
        return None


# Internal API payload helpers


def _items(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _dicts(value: Any) -> List[Dict[str, Any]]:
    return [v for v in _items(value) if isinstance(v, dict)]


def find_tile(payload: Any, item_type: str) -> Optional[Dict[str, Any]]:
    """Content of the first section item of the given type in a deep dive."""
    for section in _dicts(dig(payload, "sections")):
        for item in _dicts(section.get("items")):
            if item.get("type") == item_type:
                content = item.get("content")
                return content if isinstance(content, dict) else None
    return None


def contributor_lines(tile: Optional[Dict[str, Any]]) -> List[str]:
    metrics = _dicts(dig(tile, "metrics"))
    if not metrics:
        return []
    lines = ["", "Contributors (vs 30-day baseline):"]
    for m in metrics:
        lines.append(f"  {m.get('title', '?')}: {m.get('status', PLACEHOLDER)} (baseline: {m.get('status_subtitle', PLACEHOLDER)})")
    return lines


def coach_insight(tile: Optional[Dict[str, Any]]) -> Optional[str]:
    for item in _dicts(dig(tile, "footer", "items")):
        if item.get("type") == "WHOOP_COACH_VOW":
            vow = dig(item, "content", "vow")
            if isinstance(vow, str) and vow:
                return vow
    return None


def deep_dive_extras(deep_dive: Any) -> List[str]:
    """Contributors and coach insight from a recovery or strain deep dive."""
    tile = find_tile(deep_dive, "CONTRIBUTORS_TILE")
    lines = contributor_lines(tile)
    insight = coach_insight(tile)
    if insight:
        lines.extend(["", f"Coach insight: {insight}"])
    return lines


def pattern_lines(report: TrendReport) -> List[str]:
    if not report.patterns:
        return []
    return ["", "Patterns:"] + [f"  ⚠ {flag.message}" for flag in report.patterns]


def _fraction(value: Optional[float]) -> str:
    return pct(value * 100) if value is not None else PLACEHOLDER


# Workout association


def workouts_near_date(workouts: List[Dict[str, Any]], date: str) -> List[Dict[str, Any]]:
    """Workouts starting between the day before ``date`` and the end of ``date``.

    The extra day absorbs timezone skew for a single explicitly named date.
    """
    day_start = pytz.utc.localize(datetime.strptime(date, "%Y-%m-%d"))
    low = day_start - timedelta(days=1)
    high = day_start + timedelta(days=1)
    matched = []
    for w in workouts:
        started = parse_iso(w.get("start"))
        if started is not None and low <= started <= high:
            matched.append(w)
    return matched


def workouts_in_cycle(workouts: List[Dict[str, Any]], cycle: Dict[str, Any], now: datetime) -> List[Dict[str, Any]]:
    """Workouts starting within a cycle's exact start..end (open cycles end now)."""
    cycle_start = parse_iso(cycle.get("start"))
    if cycle_start is None:
        return []
    cycle_end = parse_iso(cycle.get("end")) or now
    matched = []
    for w in workouts:
        started = parse_iso(w.get("start"))
        if started is not None and cycle_start <= started <= cycle_end:
            matched.append(w)
    return matched


def workout_duration_ms(workout: Dict[str, Any]) -> Optional[float]:
    start = parse_iso(workout.get("start"))
    end = parse_iso(workout.get("end"))
    if start is None or end is None:
        return None
    return (end - start).total_seconds() * 1000


def zone_split(zones: Any) -> str:
    """HR time split into Z0-1 / Z2-3 / Z4-5 shares."""
    if not isinstance(zones, dict):
        return ""
    ms = {k: as_number(zones.get(k)) or 0 for k in (
        "zone_zero_milli", "zone_one_milli", "zone_two_milli",
        "zone_three_milli", "zone_four_milli", "zone_five_milli",
    )}
    total = sum(ms.values())
    if total == 0:
        return ""
    low = percent_of(ms["zone_zero_milli"] + ms["zone_one_milli"], total)
    mid = percent_of(ms["zone_two_milli"] + ms["zone_three_milli"], total)
    high = percent_of(ms["zone_four_milli"] + ms["zone_five_milli"], total)
    return f"Z0-1: {low}% | Z2-3: {mid}% | Z4-5: {high}%"


# Recovery


async def recovery_report(client: WhoopClient, date: Optional[str] = None, days: Optional[int] = None,
                          detail: Optional[str] = None) -> str:
    d = resolve_date(date, client)
    n = validate_window(1 if days is None else days)
    det = resolve_detail(detail)
    end = end_of_day(date)

    if n == 1:
        records, deep_dive = await asyncio.gather(
            client.get_recovery_v2(1, end),
            fetch_optional(client.get_deep_dive_recovery(d), "recovery deep dive"),
        )
        if not records:
            return "No recovery data available for this date."

        rec = records[0]
        score = extract(rec, "recovery_score")
        lines = [
            f"Recovery: {short_date(rec.get('created_at'))}, {pct(score)} ({recovery_color(score)})",
            "",
            f"HRV: {num(extract(rec, 'hrv'))}ms",
            f"Resting HR: {num(extract(rec, 'resting_heart_rate'), 0)}bpm",
            f"SpO2: {num(extract(rec, 'spo2'))}%",
            f"Skin temp: {num(extract(rec, 'skin_temp'))}°C",
        ]
        if det == "full":
            lines.extend(deep_dive_extras(deep_dive))
        return "\n".join(lines)

    records = await client.get_recovery_v2(n, end)
    if not records:
        return "No recovery data available."

    report = analyze(records, Domain.RECOVERY)
    if report.insufficient_data:
        return "No scored recovery data in this range."

    daily = []
    for rec in scored_records(records, Domain.RECOVERY):
        score = extract(rec, "recovery_score")
        daily.append(
            f"  {short_date(rec.get('created_at'))}: {recovery_emoji(score)}{pct(score)}"
            f" | HRV {num(extract(rec, 'hrv'))}ms"
            f" | RHR {num(extract(rec, 'resting_heart_rate'), 0)}"
            f" | SpO2 {num(extract(rec, 'spo2'))}%"
            f" | Skin {num(extract(rec, 'skin_temp'))}°C"
        )

    s = report.summaries
    lines = [
        f"Recovery trend: {short_date(records[-1].get('created_at'))} – {short_date(records[0].get('created_at'))} ({report.scored_days} days)",
        "",
        f"Avg recovery: {pct(s['recovery_score'].average)} | Range: {pct(s['recovery_score'].minimum)}–{pct(s['recovery_score'].maximum)}",
        f"Avg HRV: {num(s['hrv'].average)}ms | Avg RHR: {num(s['resting_heart_rate'].average, 0)}bpm | Avg SpO2: {num(s['spo2'].average)}%",
        "",
        "Daily:",
        *daily,
    ]
    lines.extend(pattern_lines(report))
    return "\n".join(lines)


# Sleep


def sleep_stress(last_night: Any) -> Optional[str]:
    """Sleep stress line from the last-night deep dive, if present."""
    for section in _dicts(dig(last_night, "sections")):
        if section.get("id") != "sleep_stress":
            continue
        items = _dicts(section.get("items"))
        stats = _dicts(dig(items[0], "content", "arrow_stat")) if items else []
        if stats:
            return f"{stats[0].get('current_stat_text', PLACEHOLDER)} (30d avg: {stats[0].get('historic_stat_text', PLACEHOLDER)})"
    return None


def format_single_night(rec: Dict[str, Any], stress: Optional[str] = None, detail: str = "summary") -> str:
    need = dig(rec, "score", "sleep_needed")

    def need_ms(key: str) -> float:
        return as_number(dig(need, key)) or 0

    in_bed = extract(rec, "in_bed_milli") or 0
    awake = extract(rec, "awake_milli") or 0
    light = extract(rec, "light_milli") or 0
    deep = extract(rec, "deep_milli") or 0
    rem = extract(rec, "rem_milli") or 0
    asleep = in_bed - awake

    baseline = need_ms("baseline_milli")
    debt = need_ms("need_from_sleep_debt_milli")
    strain = need_ms("need_from_recent_strain_milli")
    performance = extract(rec, "sleep_performance")
    disturbances = extract(rec, "disturbances")
    cycles = extract(rec, "sleep_cycles")

    lines = [
        f"Sleep: {short_date(rec.get('start'))}, {pct(performance)} performance",
        "",
        f"Hours: {ms_to_hours(asleep)} (needed {ms_to_hours_decimal(baseline + debt + strain)}h: "
        f"baseline {ms_to_hours_decimal(baseline)}h + debt {ms_to_hours_decimal(debt)}h + strain {ms_to_hours_decimal(strain)}h)",
        f"Performance: {pct(performance)} | Consistency: {pct(extract(rec, 'sleep_consistency'))} | Efficiency: {pct(extract(rec, 'sleep_efficiency'))}",
        f"Stages: Light {ms_to_hours(light)} ({percent_of(light, asleep)}%) | Deep {ms_to_hours(deep)} ({percent_of(deep, asleep)}%)"
        f" | REM {ms_to_hours(rem)} ({percent_of(rem, asleep)}%) | Awake {ms_to_hours(awake)} ({percent_of(awake, in_bed)}%)",
        f"Disturbances: {num(disturbances, 0)} | Sleep cycles: {num(cycles, 0)}",
        f"Respiratory rate: {num(extract(rec, 'respiratory_rate'))} rpm",
    ]
    if stress:
        lines.append(f"Sleep stress: {stress}")

    if detail == "full":
        lines.extend([
            "",
            "Breakdown:",
            f"  In bed: {ms_to_hours(in_bed)}",
            f"  Nap: {'yes' if rec.get('nap') else 'no'}",
            f"  Sleep needed baseline: {ms_to_hours(baseline)}",
            f"  Sleep debt component: {ms_to_hours(debt)}",
            f"  Strain component: {ms_to_hours(strain)}",
            f"  Nap component: {ms_to_hours(need_ms('need_from_recent_nap_milli'))}",
        ])
    return "\n".join(lines)


async def sleep_report(client: WhoopClient, date: Optional[str] = None, days: Optional[int] = None,
                       detail: Optional[str] = None) -> str:
    d = resolve_date(date, client)
    n = validate_window(1 if days is None else days)
    det = resolve_detail(detail)
    end = end_of_day(date)

    if n == 1:
        records, last_night = await asyncio.gather(
            client.get_sleep_v2(1, end),
            fetch_optional(client.get_sleep_last_night(d), "last-night sleep"),
        )
        if not records:
            return "No sleep data available for this date."
        return format_single_night(records[0], sleep_stress(last_night), det)

    records = await client.get_sleep_v2(n, end)
    if not records:
        return "No sleep data available."

    report = analyze(records, Domain.SLEEP)
    if report.insufficient_data:
        return "No scored sleep data in this range."

    daily = []
    for rec in scored_records(records, Domain.SLEEP):
        asleep = asleep_milli(rec) or 0
        daily.append(
            f"  {short_date(rec.get('start'))}: {ms_to_hours(asleep)}"
            f" | {pct(extract(rec, 'sleep_performance'))} perf"
            f" | Deep {percent_of(extract(rec, 'deep_milli'), asleep) if asleep > 0 else 0}%"
        )

    s = report.summaries
    fractions = report.stage_fractions
    avg_asleep = s["asleep_milli"].average
    lines = [
        f"Sleep trend: {short_date(records[-1].get('start'))} – {short_date(records[0].get('start'))} ({report.scored_days} days)",
        "",
        f"Avg hours: {ms_to_hours_decimal(avg_asleep) if avg_asleep is not None else PLACEHOLDER}h",
        f"Avg performance: {pct(s['sleep_performance'].average)} | Efficiency: {pct(s['sleep_efficiency'].average)}"
        f" | Consistency: {pct(s['sleep_consistency'].average)}",
        f"Avg stages: Light {_fraction(fractions['light_milli'])} | Deep {_fraction(fractions['deep_milli'])}"
        f" | REM {_fraction(fractions['rem_milli'])}",
        "",
        "Daily:",
        *daily,
    ]
    lines.extend(pattern_lines(report))
    return "\n".join(lines)


# Strain


def strain_gauge(deep_dive: Any, widget: Any):
    """Strain score and optimal range, from the deep dive or else the widget."""
    score = PLACEHOLDER
    target = ""

    gauge = find_tile(deep_dive, "SCORE_GAUGE")
    if gauge:
        score = gauge.get("score_display") or PLACEHOLDER
        if gauge.get("score_target") is not None:
            lo = as_number(gauge.get("lower_optimal_percentage"))
            hi = as_number(gauge.get("higher_optimal_percentage"))
            if lo is not None and hi is not None:
                target = f" (optimal: {num(lo * STRAIN_SCALE)}–{num(hi * STRAIN_SCALE)})"

    if score == PLACEHOLDER and isinstance(widget, dict):
        score = widget.get("strain_string") or PLACEHOLDER
        recommendation = widget.get("optimal_strain_recommendation")
        if isinstance(recommendation, dict):
            target = (f" (optimal: {num(as_number(recommendation.get('lower_optimal_strain')))}"
                      f"–{num(as_number(recommendation.get('upper_optimal_strain')))})")
    return score, target


def activity_lines(workouts: List[Dict[str, Any]], detail: str) -> List[str]:
    lines = []
    for w in workouts:
        duration = workout_duration_ms(w)
        avg_hr = extract(w, "average_heart_rate")
        max_hr = extract(w, "max_heart_rate")
        lines.append(
            f"  {w.get('sport_name', 'Activity')}: strain {num(extract(w, 'strain'))},"
            f" avg HR {num(avg_hr, 0) if avg_hr else PLACEHOLDER}, max HR {num(max_hr, 0) if max_hr else PLACEHOLDER},"
            f" {ms_to_hours(duration) if duration is not None else PLACEHOLDER}, {kcal(extract(w, 'kilojoule'))} kcal"
        )
        if detail == "full":
            zones = dig(w, "score", "zone_durations") or dig(w, "score", "zone_duration")
            if zones:
                lines.append(f"    HR zones: {zone_split(zones)}")
                distance = as_number(dig(w, "score", "distance_meter"))
                if distance:
                    lines.append(f"    Distance: {distance / 1000:.1f}km")
    return lines


async def strain_report(client: WhoopClient, date: Optional[str] = None, days: Optional[int] = None,
                        detail: Optional[str] = None) -> str:
    d = resolve_date(date, client)
    n = validate_window(1 if days is None else days)
    det = resolve_detail(detail)
    end = end_of_day(date)

    if n == 1:
        deep_dive, workouts, widget = await asyncio.gather(
            fetch_optional(client.get_deep_dive_strain(d), "strain deep dive"),
            client.get_workouts_v2(10, end),
            fetch_optional(client.get_widget_overview(), "widget overview"),
        )
        day_workouts = workouts_near_date(workouts, d)
        score, target = strain_gauge(deep_dive, widget)
        calories = widget.get("calories_string") if isinstance(widget, dict) else None

        lines = [
            f"Strain: {short_date(d)}, {score}{target}",
            f"Calories: {calories or PLACEHOLDER}",
        ]
        if day_workouts:
            lines.extend(["", "Activities:"])
            lines.extend(activity_lines(day_workouts, det))
        if det == "full":
            lines.extend(deep_dive_extras(deep_dive))
        return "\n".join(lines)

    cycles, workouts = await asyncio.gather(
        client.get_cycles_v2(n, end),
        client.get_workouts_v2(n * 3, end),
    )
    if not cycles:
        return "No strain data available."

    report = analyze(cycles, Domain.STRAIN)
    if report.insufficient_data:
        return "No scored cycles in this range."

    now = datetime.now(pytz.utc)
    daily = []
    for cycle in scored_records(cycles, Domain.STRAIN):
        names = ", ".join(w.get("sport_name", "Activity") for w in workouts_in_cycle(workouts, cycle, now)) or "rest"
        daily.append(f"  {short_date(cycle.get('start'))}: strain {num(extract(cycle, 'strain'))} | {names}")

    strain = report.summaries["strain"]
    lines = [
        f"Strain trend: {short_date(cycles[-1].get('start'))} – {short_date(cycles[0].get('start'))} ({report.scored_days} days)",
        "",
        f"Avg daily strain: {num(strain.average)} | Range: {num(strain.minimum)}–{num(strain.maximum)}",
        f"Total workouts: {len(workouts)}",
        "",
        "Daily:",
        *daily,
    ]
    lines.extend(pattern_lines(report))
    return "\n".join(lines)


# Overview


def overview_pillar(home: Any) -> Optional[Dict[str, Any]]:
    for pillar in _dicts(dig(home, "pillars")):
        if pillar.get("type") == "OVERVIEW":
            return pillar
    return None


async def overview_report(client: WhoopClient, date: Optional[str] = None) -> str:
    d = resolve_date(date, client)

    widget, home = await asyncio.gather(
        client.get_widget_overview(),
        client.get_home(d),
    )
    widget = widget if isinstance(widget, dict) else {}

    activities = []
    stats = []
    pillar = overview_pillar(home)
    for section in _dicts(dig(pillar, "sections")):
        for item in _dicts(section.get("items")):
            content = item.get("content") if isinstance(item.get("content"), dict) else {}
            if item.get("type") == "ITEMS_CARD":
                for sub in _dicts(content.get("items")):
                    if sub.get("type") == "ACTIVITY":
                        c = sub.get("content") if isinstance(sub.get("content"), dict) else {}
                        activities.append(
                            f"  {c.get('title', 'Activity')}: strain {c.get('score_display', PLACEHOLDER)},"
                            f" {c.get('start_time_text', '?')}–{c.get('end_time_text', '?')}"
                        )
            elif item.get("type") == "KEY_STATISTIC":
                stats.append(
                    f"  {content.get('title', '?')}: {content.get('current_value_display', PLACEHOLDER)}"
                    f" (30d avg: {content.get('thirty_day_value_display', PLACEHOLDER)})"
                )

    sleep_ms = as_number(dig(home, "metadata", "whoop_live_metadata", "ms_of_sleep"))
    sleep_hours = f"{sleep_ms / 3600000:.1f}" if sleep_ms is not None else PLACEHOLDER
    cycle_date = dig(home, "metadata", "cycle_metadata", "cycle_date_display") or d
    state = widget.get("recovery_state")

    lines = [
        f"WHOOP Overview: {cycle_date}",
        "",
        f"Recovery: {widget.get('recovery_string', PLACEHOLDER)} ({state.lower() if isinstance(state, str) else 'unknown'})",
        f"Sleep: {widget.get('sleep_string', PLACEHOLDER)} performance | {sleep_hours}h",
        f"Strain: {widget.get('strain_string', PLACEHOLDER)} | Calories: {widget.get('calories_string', PLACEHOLDER)}",
        f"HRV: {widget.get('hrv_string', PLACEHOLDER)}ms",
    ]

    optimal = widget.get("optimal_strain_recommendation")
    if isinstance(optimal, dict):
        lines.append(
            f"Optimal strain today: {num(as_number(optimal.get('lower_optimal_strain')))}"
            f"–{num(as_number(optimal.get('upper_optimal_strain')))}"
            f" (target: {num(as_number(optimal.get('optimal_strain')))})"
        )
    if activities:
        lines.extend(["", "Activities:", *activities])
    if stats:
        lines.extend(["", "Key stats (vs 30-day avg):", *stats])
    return "\n".join(lines)


# Healthspan


def health_metric_lines(health_tab: Any) -> List[str]:
    lines = []
    for section in _dicts(dig(health_tab, "sections")):
        for item in _dicts(section.get("items")):
            kind = item.get("type")
            content = item.get("content") if isinstance(item.get("content"), dict) else {}
            if kind in ("HEALTHSPAN_METRIC_CARD", "HEALTH_METRIC"):
                title = content.get("title") or content.get("metric_title_display") or "?"
                value = content.get("value_display") or content.get("score_display") or PLACEHOLDER
                lines.append(f"  {title}: {value}")
            elif kind == "HEALTHSPAN_HERO_METRIC":
                for sub in _dicts(content.get("items")):
                    if sub.get("type") == "WHOOP_AGE_AMOEBA":
                        continue
                    c = sub.get("content") if isinstance(sub.get("content"), dict) else {}
                    title = c.get("title") or c.get("metric_title_display")
                    if title:
                        lines.append(f"  {title}: {c.get('value_display') or c.get('score_display') or PLACEHOLDER}")
            elif kind == "HEALTH_METRIC_LIST":
                for metric in _dicts(content.get("metrics")):
                    title = metric.get("title_display") or metric.get("title") or "?"
                    lines.append(f"  {title}: {metric.get('value_display') or PLACEHOLDER} {metric.get('subtitle_display') or ''}".rstrip())
    return lines


async def healthspan_report(client: WhoopClient, detail: Optional[str] = None) -> str:
    det = resolve_detail(detail)
    healthspan = await client.get_healthspan(today(client.config.timezone))

    content = dig(healthspan, "unlocked_content")
    if not isinstance(content, dict):
        return "Healthspan data not available (may still be calibrating)."

    amoeba = content.get("whoop_age_amoeba") if isinstance(content.get("whoop_age_amoeba"), dict) else {}
    previous = content.get("previous_whoop_age_amoeba")

    lines = [
        "Healthspan",
        "",
        f"WHOOP Age: {amoeba.get('age_value_display', PLACEHOLDER)} ({amoeba.get('age_subtitle_display', '')})",
        f"Pace of aging: {amoeba.get('pace_of_aging_display', PLACEHOLDER)} ({amoeba.get('pace_of_aging_subtitle_display', '')})",
    ]
    if amoeba.get("is_calibrating"):
        lines.append("Status: still calibrating")
    if isinstance(previous, dict) and not previous.get("is_calibrating"):
        lines.extend([
            "",
            f"Previous period: WHOOP Age {previous.get('age_value_display', PLACEHOLDER)}, pace {previous.get('pace_of_aging_display', PLACEHOLDER)}",
        ])
    period = dig(content, "date_picker", "current_date_range_display")
    if period:
        lines.append(f"Period: {period}")

    if det == "full":
        health_tab = await fetch_optional(client.get_health_tab(), "health tab")
        metrics = health_metric_lines(health_tab)
        if metrics:
            lines.extend(["", "Health metrics:", *metrics])
    return "\n".join(lines)


# Body


async def body_report(client: WhoopClient) -> str:
    body = await client.get_body_measurements()
    height = as_number(dig(body, "height_meter"))
    weight = as_number(dig(body, "weight_kilogram"))
    max_hr = as_number(dig(body, "max_heart_rate"))

    bmi = num(weight / (height * height)) if height and weight else PLACEHOLDER
    lines = [
        "Body measurements",
        "",
        f"Height: {round_half_up(height * 100) if height else PLACEHOLDER}cm",
        f"Weight: {weight if weight is not None else PLACEHOLDER}kg",
        f"BMI: {bmi}",
        f"Max heart rate: {num(max_hr, 0)}bpm",
    ]
    return "\n".join(lines)


# Journal


async def journal_report(client: WhoopClient) -> str:
    data = await client.get_behavior_impact()

    positive = []
    negative = []
    insufficient = []
    for tile in _dicts(dig(data, "tiles")):
        cards = _dicts(dig(tile, "content", "impact_cards"))
        if tile.get("type") == "IMPACT_TILE":
            for card in cards:
                name = card.get("impact_card_title_display") or "?"
                change = card.get("impact_percentage_display")
                if not isinstance(change, str):
                    continue
                if change.startswith("+"):
                    positive.append(f"  {name}: {change} recovery")
                elif change.startswith("-"):
                    negative.append(f"  {name}: {change} recovery")
        elif tile.get("type") == "INSUFFICIENT_IMPACT_TILE":
            insufficient.extend(card.get("impact_card_title_display") or "?" for card in cards)

    lines = ["Journal behavior impact on recovery"]
    refreshed = dig(data, "header", "last_refresh_text_display")
    if refreshed:
        lines.append(f"({refreshed})")
    lines.append("")
    if positive:
        lines.extend(["Helps recovery:", *positive, ""])
    if negative:
        lines.extend(["Hurts recovery:", *negative, ""])
    if insufficient:
        lines.append(f"Need more data: {', '.join(insufficient)}")
    if not positive and not negative:
        lines.append("Not enough journal data yet. Keep logging to unlock insights.")
    return "\n".join(lines)


# Calendar

STATE_EMOJI = {"HIGH_RECOVERY": "🟢", "MEDIUM_RECOVERY": "🟡", "LOW_RECOVERY": "🔴"}
STATE_WEIGHT = {"HIGH_RECOVERY": 100, "MEDIUM_RECOVERY": 50, "LOW_RECOVERY": 17}
WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def weekday_pattern(weekday_states: List[List[str]]) -> List[str]:
    """Best and worst weekday by mean recovery state weight."""
    scores = []
    for name, states in zip(WEEKDAYS, weekday_states):
        if states:
            mean = sum(STATE_WEIGHT.get(s, 0) for s in states) / len(states)
            scores.append((round_half_up(mean), name))
    if len(scores) < 5:
        return []
    ranked = sorted(scores, key=lambda pair: pair[0])
    worst, best = ranked[0], ranked[-1]
    if best[0] - worst[0] <= 15:
        return []
    return [
        "",
        "Weekday patterns:",
        f"  Best: {best[1]} (avg recovery score ~{best[0]})",
        f"  Worst: {worst[1]} (avg recovery score ~{worst[0]})",
    ]


async def calendar_report(client: WhoopClient, month: Optional[str] = None) -> str:
    target = month or today(client.config.timezone)[:7]
    parsed = datetime.strptime(target, "%Y-%m")
    data = await client.get_recovery_calendar(f"{target}-15")

    days = _dicts(dig(data, "days_of_month"))
    day_states: Dict[int, str] = {}
    for day in days:
        if not day.get("has_data"):
            continue
        try:
            day_states[int(day.get("date_value_display"))] = day.get("day_state")
        except (TypeError, ValueError):
            continue

    first_weekday, days_in_month = calendar.monthrange(parsed.year, parsed.month)
    lines = [
        f"Recovery calendar: {dig(data, 'calendar_title_display') or target}",
        "",
        "Mon Tue Wed Thu Fri Sat Sun",
        "─── ─── ─── ─── ─── ─── ───",
    ]

    weekday_states: List[List[str]] = [[] for _ in WEEKDAYS]
    week = "    " * first_weekday
    for day_num in range(1, days_in_month + 1):
        weekday = (first_weekday + day_num - 1) % 7
        if day_num in day_states:
            state = day_states[day_num]
            week += f"{STATE_EMOJI.get(state, '  ')}{day_num:>2} "
            if state in STATE_WEIGHT:
                weekday_states[weekday].append(state)
        else:
            week += f" {day_num:>2} "
        if weekday == 6 or day_num == days_in_month:
            lines.append(week.rstrip())
            week = ""

    counted = [day.get("day_state") for day in days if day.get("has_data")]
    lines.extend([
        "",
        f"Summary: 🟢 {counted.count('HIGH_RECOVERY')} green | 🟡 {counted.count('MEDIUM_RECOVERY')} yellow"
        f" | 🔴 {counted.count('LOW_RECOVERY')} red ({len(counted)} days)",
    ])
    lines.extend(weekday_pattern(weekday_states))
    return "\n".join(lines)


# Connection


async def connection_report(client: WhoopClient) -> str:
    auth = await client.ensure_auth()
    profile = await fetch_optional(client.get_user_profile(), "user profile")
    expires = datetime.fromtimestamp(auth.expires_at, pytz.utc).strftime("%Y-%m-%d %H:%M UTC")

    lines = ["Connected to WHOOP."]
    if isinstance(profile, dict):
        name = f"{profile.get('first_name', '')} {profile.get('last_name', '')}".strip()
        if name:
            lines.append(f"Account: {name}")
    lines.append(f"User ID: {auth.user_id or PLACEHOLDER}")
    lines.append(f"Token valid until: {expires}")
    return "\n".join(lines)
