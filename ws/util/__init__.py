from ws.util.misc import now, now_iso, parse_hhmm, format_hhmm, format_duration
