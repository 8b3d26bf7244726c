"""
Console logging for candles-keeper.

Every line is prefixed with a coloured level tag; inline values are coloured
by kind (timestamps, counts, series keys) so anomalies stand out in long runs.
"""

from datetime import datetime, timezone
from typing import Optional

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)

# Level tags (labels)
INFO    = Fore.GREEN   + "[INFO]"    + Style.RESET_ALL
WARN    = Fore.YELLOW  + "[WARN]"    + Style.RESET_ALL
ERROR   = Fore.RED     + "[ERROR]"   + Style.RESET_ALL
SUCCESS = Fore.GREEN   + "[SUCCESS]" + Style.RESET_ALL
UPDATE  = Fore.MAGENTA + "[UPDATE]"  + Style.RESET_ALL
TRACE   = Fore.CYAN    + "[TRACE]"   + Style.RESET_ALL
NEW     = Fore.WHITE   + "[NEW]"     + Style.RESET_ALL

# Inline value colors
COLOR_DIR        = Fore.CYAN
COLOR_TIMESTAMPS = Fore.MAGENTA
COLOR_ROWS       = Fore.RED
COLOR_VAR        = Fore.CYAN
COLOR_TYPE       = Fore.YELLOW
COLOR_DESC       = Fore.MAGENTA
COLOR_REQ        = Fore.RED + "[REQUIRED]" + Style.RESET_ALL

LABELS = {
    "INFO": INFO,
    "WARN": WARN,
    "ERROR": ERROR,
    "SUCCESS": SUCCESS,
    "UPDATE": UPDATE,
    "TRACE": TRACE,
    "NEW": NEW,
}

def _label(level: str) -> str:
    return LABELS.get(level, INFO)

def log(level: str, message: str) -> None:
    print(f"{_label(level)} {message}", flush=True)

def log_info(message: str) -> None:
    log("INFO", message)

def log_warn(message: str) -> None:
    log("WARN", message)

def log_error(message: str) -> None:
    log("ERROR", message)

def log_success(message: str) -> None:
    log("SUCCESS", message)

def log_update(message: str) -> None:
    log("UPDATE", message)

def log_trace(message: str) -> None:
    log("TRACE", message)

def log_new(message: str) -> None:
    log("NEW", message)

def c_dir(x: object) -> str:
    return f"{COLOR_DIR}{x}{Style.RESET_ALL}"

def c_ts(x: object) -> str:
    return f"{COLOR_TIMESTAMPS}{x}{Style.RESET_ALL}"

def c_rows(x: object) -> str:
    return f"{COLOR_ROWS}{x}{Style.RESET_ALL}"

def c_var(x: object) -> str:
    return f"{COLOR_VAR}{x}{Style.RESET_ALL}"

def c_type(x: object) -> str:
    return f"{COLOR_TYPE}{x}{Style.RESET_ALL}"

def c_desc(x: object) -> str:
    return f"{COLOR_DESC}{x}{Style.RESET_ALL}"

def c_key(key: object) -> str:
    """Series key rendering used as the prefix of per-pair log lines."""
    return f"{COLOR_TYPE}[{key}]{Style.RESET_ALL}"

def fmt_ts_utc(ms: Optional[int]) -> str:
    if ms is None:
        return "N/A"
    try:
        dt = datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)
        return dt.strftime("%Y-%m-%d %H:%M:%S UTC")
    except (OverflowError, OSError, ValueError, TypeError):
        return "N/A"

def fmt_mts(ms: Optional[int]) -> str:
    """Format 'milliseconds -> human time' with coloring."""
    if ms is None:
        return c_ts("N/A")
    return f"{c_var(int(ms))} → {c_ts(fmt_ts_utc(ms))}"
