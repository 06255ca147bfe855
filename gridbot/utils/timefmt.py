"""Human-readable durations."""


def format_runtime(seconds: int) -> str:
    """3723 -> "1h 2m 3s". Seconds are omitted once the span reaches a day."""
    if seconds <= 0:
        return "0s"

    days, rem = divmod(int(seconds), 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs and not days:
        parts.append(f"{secs}s")
    return " ".join(parts) or "0s"
