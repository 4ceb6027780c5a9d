"""Text formatting helpers shared by the session manager and the UI."""

from typing import Any, Dict, Iterable, Optional


def format_bytes(num: int) -> str:
    if num < 1024:
        return f"{num} B"
    if num < 1024 * 1024:
        return f"{num / 1024:.1f} KB"
    if num < 1024 * 1024 * 1024:
        return f"{num / (1024 * 1024):.1f} MB"
    return f"{num / (1024 * 1024 * 1024):.1f} GB"


def format_duration_ns(ns: Optional[int]) -> Optional[str]:
    if ns is None:
        return None
    if ns == 0:
        return "0s"
    secs = ns // 1_000_000_000
    if secs >= 60:
        if secs % 60 == 0:
            return f"{secs // 60}m"
        return f"{secs // 60}m {secs % 60}s"
    return f"{secs}s"


def format_details(info: Dict[str, Any]) -> str:
    """Render a container inspect payload for the detail pane."""
    state = info.get("State") or {}
    lines = [
        f"ID: {info.get('Id') or 'Unknown'}",
        f"Name: {(info.get('Name') or 'Unknown').lstrip('/')}",
        f"Image: {(info.get('Config') or {}).get('Image') or info.get('Image') or 'Unknown'}",
        f"Status: {state.get('Status') or 'Unknown'}",
    ]

    env = (info.get("Config") or {}).get("Env")
    if env:
        lines.append("")
        lines.append("Environment:")
        lines.extend(f"  {e}" for e in env)

    mounts = info.get("Mounts")
    if mounts:
        lines.append("")
        lines.append("Mounts:")
        for m in mounts:
            lines.append(f"  {m.get('Source') or '?'} -> {m.get('Destination') or '?'}")
    return "\n".join(lines) + "\n"


def format_image_details(info: Dict[str, Any]) -> str:
    lines = [f"ID: {info.get('Id') or 'Unknown'}"]
    tags = info.get("RepoTags")
    if tags:
        lines.append("Tags:")
        lines.extend(f"  {t}" for t in tags)
    lines.append(f"Size: {format_bytes(info.get('Size') or 0)}")
    return "\n".join(lines) + "\n"


def sparkline(values: Iterable[float], width: int = 40) -> str:
    """Generate an ASCII sparkline from the most recent values."""
    values = list(values)[-width:]
    if not values:
        return ""

    min_val = min(values)
    max_val = max(values)
    range_val = max_val - min_val

    if range_val == 0:
        return "▄" * len(values)

    spark_chars = "▁▂▃▄▅▆▇█"
    result = []
    for value in values:
        normalized = (value - min_val) / range_val
        result.append(spark_chars[int(normalized * (len(spark_chars) - 1))])
    return "".join(result)
