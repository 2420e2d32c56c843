from datetime import datetime
from promptlab.core import config

_ALWAYS = ("WARNING", "ERROR")


def global_log(msg, level="INFO"):
    if config.LOG_LEVEL == "NONE":
        return
    if config.LOG_LEVEL == "INFO" and level == "DEBUG":
        return
    if config.LOG_LEVEL in _ALWAYS and level not in _ALWAYS:
        return

    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    print(f"[{ts}] [{level}] {msg}", flush=True)


def log_error(error: Exception, context: str = ""):
    """Log an error with its class name so structural faults are easy to grep for."""
    prefix = f"{context} - " if context else ""
    global_log(f"{prefix}{type(error).__name__}: {error}", level="ERROR")
