from datetime import datetime


def format_clock(seconds: int) -> str:
    """Format a countdown as MM:SS (minutes are not wrapped into hours)"""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


def format_duration_short(seconds: int) -> str:
    """Format seconds as e.g. 2h 05m, or 35m under an hour"""
    hours, remainder = divmod(abs(seconds), 3600)
    minutes = remainder // 60
    if hours:
        return f"{int(hours)}h {int(minutes):02d}m"
    return f"{int(minutes)}m"


def format_time(dt: datetime) -> str:
    """Format datetime as HH:MM"""
    return dt.strftime("%H:%M")


def whole_minutes(seconds: int) -> int:
    return int(seconds) // 60
