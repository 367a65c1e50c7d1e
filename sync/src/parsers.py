"""Shape raw Garmin JSON into activities / daily_metrics rows."""

from datetime import date, datetime

PROVIDER = "garmin"

# Summary fields that only carry a value when the device recorded the day
_DAILY_DATA_FIELDS = ("totalSteps", "restingHeartRate", "totalKilocalories", "averageStressLevel")


def _parse_local_time(ts: str | None) -> datetime | None:
    """Parse Garmin's "2026-02-20 14:30:00" / ISO 8601 local timestamps."""
    if not ts:
        return None
    try:
        return datetime.fromisoformat(str(ts).replace(" ", "T").rstrip("Z"))
    except ValueError:
        return None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _to_int(value) -> int | None:
    if value is None:
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def parse_activity(summary: dict, detail: dict | None = None) -> dict:
    """Merge an activity list entry and its (optional) detail into one row."""
    detail = detail if isinstance(detail, dict) else {}
    dto = detail.get("summaryDTO")
    if not isinstance(dto, dict):
        dto = {}
    activity_type = summary.get("activityType") or detail.get("activityTypeDTO")
    if not isinstance(activity_type, dict):
        activity_type = {}

    return {
        "id": str(summary["activityId"]),
        "provider": PROVIDER,
        "start_time": _parse_local_time(
            _first(summary.get("startTimeLocal"), dto.get("startTimeLocal"))
        ),
        "activity_type": activity_type.get("typeKey"),
        "name": _first(summary.get("activityName"), detail.get("activityName")),
        "distance_meters": _first(dto.get("distance"), summary.get("distance")),
        "duration_seconds": _first(dto.get("duration"), summary.get("duration")),
        "calories": _first(dto.get("calories"), summary.get("calories")),
        "average_hr": _to_int(_first(dto.get("averageHR"), summary.get("averageHR"))),
        "max_hr": _to_int(_first(dto.get("maxHR"), summary.get("maxHR"))),
        "average_speed": _first(dto.get("averageSpeed"), summary.get("averageSpeed")),
        "max_speed": _first(dto.get("maxSpeed"), summary.get("maxSpeed")),
        "elevation_gain": _first(dto.get("elevationGain"), summary.get("elevationGain")),
        "elevation_loss": _first(dto.get("elevationLoss"), summary.get("elevationLoss")),
        "description": _first(detail.get("description"), summary.get("description")),
        "location_name": _first(detail.get("locationName"), summary.get("locationName")),
        "detail_json": detail or None,
        "raw_json": {"summary": summary, "detail": detail or None},
    }


def has_daily_data(summary: dict | None) -> bool:
    """False when Garmin has no summary for the day (nothing to store)."""
    if not summary or not isinstance(summary, dict):
        return False
    return any(summary.get(f) is not None for f in _DAILY_DATA_FIELDS)


def parse_sleep(raw_data: dict | None) -> dict | None:
    """Extract sleep fields from dailySleepData raw JSON."""
    if not isinstance(raw_data, dict):
        return None
    dto = raw_data.get("dailySleepDTO")
    if not isinstance(dto, dict) or dto.get("sleepTimeSeconds") is None:
        return None

    scores = dto.get("sleepScores")
    overall = scores.get("overall") if isinstance(scores, dict) else None
    overall_score = overall.get("value") if isinstance(overall, dict) else None

    return {
        "sleep_seconds": dto.get("sleepTimeSeconds"),
        "sleep_score": overall_score,
        "deep_sleep_seconds": dto.get("deepSleepSeconds"),
        "light_sleep_seconds": dto.get("lightSleepSeconds"),
        "rem_sleep_seconds": dto.get("remSleepSeconds"),
        "awake_sleep_seconds": dto.get("awakeSleepSeconds"),
        "avg_spo2": dto.get("averageSpO2Value"),
        "avg_respiration": dto.get("averageRespirationValue"),
    }


def parse_hrv(raw_data: dict | None) -> dict:
    """HRV status as reported by the HRV endpoint."""
    summary = raw_data.get("hrvSummary") if isinstance(raw_data, dict) else None
    if not isinstance(summary, dict):
        summary = {}
    return {
        "hrv_status": summary.get("status"),
        "hrv_last_night_avg": summary.get("lastNightAvg"),
    }


def parse_body_battery(raw_data: list | None) -> int | None:
    """Most recent body battery level of the day."""
    if not isinstance(raw_data, list):
        return None
    latest = None
    for report in raw_data:
        if not isinstance(report, dict):
            continue
        points = report.get("bodyBatteryValuesArray")
        if not isinstance(points, list):
            continue
        for point in points:
            if isinstance(point, (list, tuple)) and len(point) >= 2 and point[1] is not None:
                latest = point[1]
    return _to_int(latest)


def parse_stress(raw_data: dict | None) -> int | None:
    if not isinstance(raw_data, dict):
        return None
    return _to_int(raw_data.get("avgStressLevel"))


def parse_daily_metric(
    day: date,
    summary: dict,
    sleep: dict | None = None,
    body_battery: list | None = None,
    stress: dict | None = None,
    hrv: dict | None = None,
) -> dict:
    """Build the full daily_metrics row for one day.

    Sleep and HRV columns come only from their own endpoints, so a missing
    sub-resource leaves them NULL.
    """
    sleep_fields = parse_sleep(sleep) or {}
    hrv_fields = parse_hrv(hrv)

    return {
        "day": day,
        "steps": _to_int(summary.get("totalSteps")),
        "resting_heart_rate": _to_int(summary.get("restingHeartRate")),
        "body_battery": _first(
            parse_body_battery(body_battery),
            _to_int(summary.get("bodyBatteryMostRecentValue")),
        ),
        "sleep_seconds": sleep_fields.get("sleep_seconds"),
        "sleep_score": sleep_fields.get("sleep_score"),
        "deep_sleep_seconds": sleep_fields.get("deep_sleep_seconds"),
        "light_sleep_seconds": sleep_fields.get("light_sleep_seconds"),
        "rem_sleep_seconds": sleep_fields.get("rem_sleep_seconds"),
        "awake_sleep_seconds": sleep_fields.get("awake_sleep_seconds"),
        "avg_spo2": _first(summary.get("averageSpo2"), sleep_fields.get("avg_spo2")),
        "avg_respiration": _first(
            summary.get("avgWakingRespirationValue"), sleep_fields.get("avg_respiration"),
        ),
        "avg_stress_level": _first(
            parse_stress(stress), _to_int(summary.get("averageStressLevel")),
        ),
        "hrv_status": hrv_fields["hrv_status"],
        "hrv_last_night_avg": hrv_fields["hrv_last_night_avg"],
        "raw_json": {
            "summary": summary,
            "sleep": sleep,
            "body_battery": body_battery,
            "stress": stress,
            "hrv": hrv,
        },
    }
