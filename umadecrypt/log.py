import sys
import logging

_FORMATTER = logging.Formatter("[$levelname] $filename: $message", style="$")
_STDOUT_HANDLER = logging.StreamHandler(sys.stdout)
_STDOUT_HANDLER.setFormatter(_FORMATTER)
_STDOUT_HANDLER.setLevel(logging.WARNING)
_LOGGER = logging.getLogger("umadecrypt")
_LOGGER.setLevel(logging.DEBUG)
_LOGGER.addHandler(_STDOUT_HANDLER)


def get_logger(name: str) -> logging.Logger:
    if name.startswith("umadecrypt."):
        name = name[len("umadecrypt."):]
    return _LOGGER.getChild(name)


def log_setup(args):
    if getattr(args, "debug", False):
        _STDOUT_HANDLER.setLevel(logging.DEBUG)
    elif getattr(args, "verbose", False):
        _STDOUT_HANDLER.setLevel(logging.INFO)
    else:
        _STDOUT_HANDLER.setLevel(logging.WARNING)
