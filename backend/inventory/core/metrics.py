import re
from collections import Counter
from threading import Lock

LabelKey = tuple[tuple[str, str], ...]

_lock = Lock()
_counters: Counter[tuple[str, LabelKey]] = Counter()

METRIC_DESCRIPTIONS: dict[str, str] = {
    "http_requests_total": "HTTP requests served by the API.",
    "http_errors_total": "HTTP responses with an error status.",
    "login_attempt_total": "Login attempts that reached credential verification.",
    "login_blocked_total": "Login attempts rejected before credential verification.",
    "lockout_armed_total": "Account lockouts armed (automatic or administrative).",
    "lockout_released_total": "Account lockouts removed by an administrator.",
    "defense_fail_open_total": "Defense checks that failed open because storage was unavailable.",
    "maintenance_run_total": "Security maintenance runs by outcome.",
}


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, value: int = 1, **labels: str) -> None:
    with _lock:
        _counters[(name, _label_key(labels))] += int(value)


def counter_value(name: str, **labels: str) -> int:
    with _lock:
        return _counters.get((name, _label_key(labels)), 0)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()


def snapshot_metrics() -> dict[str, list[dict]]:
    result: dict[str, list[dict]] = {}
    with _lock:
        items = sorted(_counters.items())
    for (name, label_key), value in items:
        result.setdefault(name, []).append({"labels": dict(label_key), "value": value})
    return result


def _metric_name(name: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9_:]", "_", name)
    return clean if re.match(r"^[a-zA-Z_:]", clean) else f"metric_{clean}"


def _label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def prometheus_text() -> str:
    lines: list[str] = []
    for raw_name, items in snapshot_metrics().items():
        name = _metric_name(raw_name)
        if raw_name in METRIC_DESCRIPTIONS:
            lines.append(f"# HELP {name} {METRIC_DESCRIPTIONS[raw_name]}")
        lines.append(f"# TYPE {name} counter")
        for item in items:
            labels = ",".join(f'{k}="{_label_value(v)}"' for k, v in item["labels"].items())
            lines.append(f"{name}{{{labels}}} {item['value']}" if labels else f"{name} {item['value']}")
    return "\n".join(lines) + "\n"
