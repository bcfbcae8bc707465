"""
Analytics Service — コンバージョン指標

登録・支払いのコンバージョンイベントから、管理画面の
「コンバージョン分析」に表示する指標を計算する。
すべて純粋関数で、DB アクセスは queries.py 側で行う。
"""

from collections import Counter
from datetime import datetime

from .sessions import funnel
from .sources import map_referrer_to_source

TIME_RANGES_MS = {
    "24h": 24 * 60 * 60 * 1000,
    "7d": 7 * 24 * 60 * 60 * 1000,
    "30d": 30 * 24 * 60 * 60 * 1000,
}
RETENTION_PERIODS = {"day1": 1, "day7": 7, "day30": 30}
REGISTRATION_SUBTYPES = ("standard", "google")
PAYMENT_SUBTYPES = {"topUp": "top_up", "order": "order"}


def time_range_ms(time_range: str | None) -> int:
    """未知の値は 24h として扱う。"""
    return TIME_RANGES_MS.get(time_range or "24h", TIME_RANGES_MS["24h"])


def peak_registration_time(timestamps: list[datetime]) -> dict:
    distribution = Counter(ts.hour for ts in timestamps)

    peak_hour, max_count = 0, 0
    for hour in sorted(distribution):
        if distribution[hour] > max_count:
            peak_hour, max_count = hour, distribution[hour]

    def _between(lo: int, hi: int) -> int:
        return sum(c for h, c in distribution.items() if lo <= h < hi)

    return {
        "hour": peak_hour,
        "count": max_count,
        "trends": {
            "morning": _between(6, 12),
            "afternoon": _between(12, 18),
            "evening": _between(18, 22),
            "night": sum(c for h, c in distribution.items() if h >= 22 or h < 6),
        },
        "distribution": {str(h): distribution[h] for h in sorted(distribution)},
    }


def device_preference(devices: list[str]) -> dict:
    stats = {"desktop": 0, "mobile": 0, "tablet": 0, "other": 0}
    for device in devices:
        name = (device or "").lower()
        if "desktop" in name:
            stats["desktop"] += 1
        elif "mobile" in name or "phone" in name:
            stats["mobile"] += 1
        elif "tablet" in name:
            stats["tablet"] += 1
        else:
            stats["other"] += 1
    total = sum(stats.values())

    preferred, max_count = "desktop", stats["desktop"]
    for device, count in stats.items():
        if count > max_count:
            preferred, max_count = device, count

    return {
        "device": preferred,
        "percentage": max_count / total * 100 if total else 0,
        "distribution": [
            {
                "device": device,
                "count": count,
                "percentage": count / total * 100 if total else 0,
            }
            for device, count in stats.items()
        ],
    }


def _retention_trend(day1: float, day7: float, day30: float) -> str:
    if day1 > 70 and day7 > 40 and day30 > 20:
        return "excellent"
    if day1 > 50 and day7 > 25 and day30 > 10:
        return "good"
    if day1 > 30 and day7 > 15 and day30 > 5:
        return "stable"
    if day1 > 20 and day7 > 10 and day30 > 2:
        return "concerning"
    return "poor"


def retention_rate(visits: list[tuple[str, datetime]]) -> dict:
    """
    ユーザーの再訪率。

    visits は (user_id, 訪問時刻) の列。初回訪問から period 日以上後に
    再訪があれば、その期間の「戻ってきたユーザー」として数える。
    """
    by_user: dict[str, set[datetime]] = {}
    for user_id, ts in visits:
        by_user.setdefault(user_id, set()).add(ts)

    def _period(days: int) -> dict:
        returning = 0
        for times in by_user.values():
            ordered = sorted(times)
            if len(ordered) > 1 and any(
                (t - ordered[0]).days >= days for t in ordered[1:]
            ):
                returning += 1
        total = len(by_user)
        return {
            "rate": returning / total * 100 if total else 0,
            "returningUsers": returning,
            "totalUsers": total,
        }

    rates = {name: _period(days) for name, days in RETENTION_PERIODS.items()}
    return {
        "rates": rates,
        "trend": _retention_trend(
            rates["day1"]["rate"], rates["day7"]["rate"], rates["day30"]["rate"]
        ),
        "summary": {
            "shortTerm": rates["day1"]["rate"],
            "mediumTerm": rates["day7"]["rate"],
            "longTerm": rates["day30"]["rate"],
        },
    }


def conversion_of(row: dict) -> tuple[str, str] | None:
    """
    行が表すコンバージョン (type, subtype) を返す。

    conversion_<type>_<subtype> イベント名か、eventData.conversionData
    （Google ログインの新規ユーザー等）のどちらかで判定する。
    """
    event_type = row["event_type"]
    for kind in ("registration", "payment"):
        prefix = f"conversion_{kind}_"
        if event_type.startswith(prefix):
            return kind, event_type[len(prefix):]
    data = (row.get("event_data") or {}).get("conversionData") or {}
    if data.get("type") in ("registration", "payment") and data.get("subtype"):
        return data["type"], data["subtype"]
    return None


def _conversion_value(row: dict) -> float:
    event_data = row.get("event_data") or {}
    value = (event_data.get("conversionData") or {}).get("value")
    if value is None:
        value = (event_data.get("paymentData") or {}).get("amount")
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _unique(values) -> list:
    return list(dict.fromkeys(v for v in values if v))


def _timeline(rows: list[dict], with_amount: bool = False) -> list[dict]:
    days: dict[str, dict] = {}
    for row in rows:
        day = row["timestamp"].date().isoformat()
        entry = days.setdefault(day, {"date": day, "count": 0})
        entry["count"] += 1
        if with_amount:
            entry["totalAmount"] = entry.get("totalAmount", 0) + _conversion_value(row)
    return [days[d] for d in sorted(days)]


def _registration_summary(rows: list[dict]) -> dict:
    device_info = [r.get("device_info") or {} for r in rows]
    return {
        "total": len(rows),
        "uniqueUsers": len({r["user_id"] for r in rows}),
        "distribution": {
            "sources": _unique((r.get("event_data") or {}).get("source") for r in rows),
            "devices": _unique(d.get("device") for d in device_info),
            "browsers": _unique(d.get("browser") for d in device_info),
            "paths": _unique((r.get("event_data") or {}).get("path") for r in rows),
        },
        "timeline": _timeline(rows),
    }


def _payment_summary(rows: list[dict]) -> dict:
    per_user = Counter(r["user_id"] for r in rows)
    total_amount = sum(_conversion_value(r) for r in rows)
    statuses = [
        ((r.get("event_data") or {}).get("conversionData") or {}).get(
            "status", "completed"
        )
        for r in rows
    ]
    return {
        "total": len(rows),
        "totalAmount": total_amount,
        "uniqueUsers": len(per_user),
        "distribution": {
            "devices": _unique((r.get("device_info") or {}).get("device") for r in rows),
            "peakHours": [
                {"hour": h, "count": c}
                for h, c in Counter(r["timestamp"].hour for r in rows).most_common(3)
            ],
        },
        "timeline": _timeline(rows, with_amount=True),
        "metrics": {
            "avgOrderValue": total_amount / len(rows) if rows else 0,
            "repeatCustomerRate": (
                sum(1 for c in per_user.values() if c > 1) / len(per_user) * 100
                if per_user
                else 0
            ),
            "successRate": (
                statuses.count("completed") / len(statuses) * 100 if statuses else 100
            ),
        },
    }


def conversion_summary(rows: list[dict]) -> dict:
    """管理画面「コンバージョン分析」の全データを計算する。"""
    registrations: dict[str, list[dict]] = {s: [] for s in REGISTRATION_SUBTYPES}
    payments: dict[str, list[dict]] = {s: [] for s in PAYMENT_SUBTYPES.values()}
    for row in rows:
        conversion = conversion_of(row)
        if conversion is None:
            continue
        kind, subtype = conversion
        bucket = registrations if kind == "registration" else payments
        if subtype in bucket:
            bucket[subtype].append(row)

    registration_summary = {s: _registration_summary(registrations[s]) for s in REGISTRATION_SUBTYPES}
    payment_summary = {
        key: _payment_summary(payments[subtype])
        for key, subtype in PAYMENT_SUBTYPES.items()
    }
    funnel_data = funnel(rows)

    all_registrations = registrations["standard"] + registrations["google"]
    all_payments = payments["top_up"] + payments["order"]
    total_revenue = sum(_conversion_value(r) for r in all_payments)
    paying_users = {r["user_id"] for r in all_payments}

    geo: dict[str, dict] = {}
    source_stats: dict[str, dict] = {}
    for row in all_registrations + all_payments:
        zone = (row.get("device_info") or {}).get("timeZone") or "unknown"
        source = map_referrer_to_source((row.get("event_data") or {}).get("source"))
        geo_entry = geo.setdefault(zone, {"registrations": 0, "payments": 0, "revenue": 0})
        src_entry = source_stats.setdefault(source, {"count": 0, "conversions": 0, "rate": 0})
        if conversion_of(row)[0] == "registration":
            geo_entry["registrations"] += 1
            src_entry["count"] += 1
        else:
            geo_entry["payments"] += 1
            geo_entry["revenue"] += _conversion_value(row)
            src_entry["conversions"] += 1
    for entry in source_stats.values():
        entry["rate"] = entry["conversions"] / entry["count"] * 100 if entry["count"] else 0

    standard, google = registration_summary["standard"], registration_summary["google"]
    metrics = {
        "conversionEfficiency": (
            funnel_data["conversionRate"] / 100
            * (payment_summary["topUp"]["totalAmount"] + payment_summary["order"]["totalAmount"])
            / max(standard["uniqueUsers"], google["uniqueUsers"], 1)
        ),
        "registrationSuccess": (
            (standard["total"] + google["total"]) / (funnel_data["totalSessions"] or 1) * 100
        ),
        "preferredMethod": "standard" if standard["total"] > google["total"] else "google",
        "peakRegistrationTime": peak_registration_time([r["timestamp"] for r in all_registrations]),
        "devicePreference": device_preference(
            [(r.get("device_info") or {}).get("device") for r in all_registrations]
        ),
        "retentionRate": retention_rate(
            [(r["user_id"], r["timestamp"]) for r in rows if r["user_id"] != "anonymous"]
        ),
    }

    return {
        "registrations": {"summary": registration_summary, "metrics": metrics},
        "payments": {
            "summary": payment_summary,
            "metrics": {
                "totalRevenue": total_revenue,
                "averageRevenuePerUser": total_revenue / len(paying_users) if paying_users else 0,
                "totalTransactions": len(all_payments),
            },
        },
        "funnel": funnel_data,
        "geoDistribution": geo,
        "sourceStats": source_stats,
    }
