from datetime import datetime, time


# Simply returns the current local time as a timezone-aware datetime.
def now():
    return datetime.now().astimezone()

# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return now().isoformat()

# Parses an "HH:MM" string (like the reminder time stored in state.json) into a datetime.time. Raises ValueError
# on anything that isn't a valid 24h clock time.
def parse_hhmm(text):
    try:
        hours, minutes = map(int, str(text).strip().split(":"))
    except ValueError:
        raise ValueError(f"Expected a time formatted as HH:MM, got '{text}'")
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Time '{text}' is outside of 00:00-23:59")
    return time(hours, minutes)

# Inverse of parse_hhmm.
def format_hhmm(value):
    return f"{value.hour:02d}:{value.minute:02d}"

# Formats a number of seconds as "Hh MMm", used for remaining/elapsed session time.
def format_duration(seconds):
    sign = "-" if seconds < 0 else ""
    seconds = int(abs(seconds))
    hours, remainder = divmod(seconds, 3600)
    return f"{sign}{hours}h {remainder // 60:02d}m"
