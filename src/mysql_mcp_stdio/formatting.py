"""JSON rendering of MySQL result values."""

import json
from datetime import date, datetime, time, timedelta
from decimal import Decimal


class DatabaseJSONEncoder(json.JSONEncoder):
    """JSON encoder for the value types mysql.connector returns"""

    def default(self, obj):
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()
        elif isinstance(obj, timedelta):
            # TIME columns come back as timedelta
            return str(obj)
        elif isinstance(obj, Decimal):
            # keep full precision, as the text MySQL sent
            return str(obj)
        elif isinstance(obj, (bytes, bytearray)):
            try:
                return bytes(obj).decode("utf-8")
            except UnicodeDecodeError:
                return bytes(obj).hex()
        elif isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def to_json_text(data) -> str:
    """Pretty-printed JSON text used as tool call output"""
    return json.dumps(data, cls=DatabaseJSONEncoder, indent=2, ensure_ascii=False)


def dumps_line(envelope) -> str:
    """Compact single-line JSON for the wire"""
    return json.dumps(envelope, cls=DatabaseJSONEncoder, separators=(",", ":"))
