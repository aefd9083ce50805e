#!/usr/bin/env python3
"""bootstrap logging"""

import logging
import logging.handlers
import pathlib
import sys
import time

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(process)d %(processName)s/%(threadName)s "
    + "%(module)s:%(funcName)s:%(lineno)d %(message)s"
)
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def default_logdir() -> pathlib.Path:
    """~/.nadctl_logs"""
    return pathlib.Path.home().joinpath(".nadctl_logs")


def setuplogging(
    logdir: pathlib.Path | str | None = None,
    logname: str = "nadctl.log",
    rotate: bool = False,
    level: int = logging.DEBUG,
) -> pathlib.Path:
    """configure logging to a rotating file"""
    if logdir:
        logpath = pathlib.Path(logdir)
        if logpath.is_file():
            logname = logpath.name
            logpath = logpath.parent
    else:
        logpath = default_logdir()
    logpath.mkdir(parents=True, exist_ok=True)
    logfile = logpath.joinpath(logname)

    besuretorotate = bool(logfile.exists() and rotate)
    logfhandler = logging.handlers.RotatingFileHandler(
        filename=logfile, backupCount=10, encoding="utf-8"
    )
    if besuretorotate:
        for attempt in range(3):
            try:
                logfhandler.doRollover()
                break
            except OSError as error:
                if attempt < 2:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                logging.warning("Could not rotate log file after 3 attempts: %s", error)

    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[logfhandler],
        level=level,
        force=True,
    )
    logging.captureWarnings(True)
    return logfile


def setupconsolelogging(debug: bool = False) -> None:
    """log to stderr; warnings only unless debugging"""
    logging.basicConfig(
        format=LOG_FORMAT if debug else "%(levelname)s %(message)s",
        datefmt=LOG_DATEFMT,
        handlers=[logging.StreamHandler(sys.stderr)],
        level=logging.DEBUG if debug else logging.WARNING,
        force=True,
    )
    logging.captureWarnings(True)
