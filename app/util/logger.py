import logging, json, sys, os
from datetime import datetime, timezone

class JsonFormatter(logging.Formatter):
    def format(self, record):
        d = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds"),
            "lvl": record.levelname,
            "name": record.name,
        }
        # log.info({"event": ..., ...}) -> structured fields
        if isinstance(record.msg, dict):
            d.update(record.msg)
        else:
            d["msg"] = record.getMessage()
        if record.args and isinstance(record.args, dict):
            d.update(record.args)
        if record.exc_info:
            d["exc"] = self.formatException(record.exc_info)
        return json.dumps(d, ensure_ascii=False, default=str)

def _level():
    return getattr(logging, os.getenv("LOG_LEVEL","INFO").upper(), logging.INFO)

def _json_handler():
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(JsonFormatter())
    h._wabot = True
    return h

def setup_logging():
    """JSON lines on stdout for every logger that propagates to root."""
    root = logging.getLogger()
    if not any(getattr(h, "_wabot", False) for h in root.handlers):
        root.addHandler(_json_handler())
    root.setLevel(_level())

def get_logger(name="wabot"):
    log = logging.getLogger(name)
    if not log.handlers:
        log.addHandler(_json_handler())
        log.setLevel(_level())
        log.propagate = False
    return log
