# Overview: Resource path parsing shared by rule compilation and request-time matching.

import re

from ..errors import ConfigurationError

WILDCARD_PREFIX = ":"

_LITERAL_SEGMENT = re.compile(r"^[A-Za-z0-9_.~-]+$")
_WILDCARD_SEGMENT = re.compile(r"^:[A-Za-z_][A-Za-z0-9_]*$")


def split_path(path: str) -> tuple[str, ...]:
    """
    Split a resource path into segments.

    Leading and trailing slashes are ignored, so "/orders/1/" and "orders/1"
    are the same path. Empty inner segments are kept (and never match).
    """
    stripped = (path or "").strip().strip("/")
    if not stripped:
        return ()
    return tuple(stripped.split("/"))


def is_wildcard(segment: str) -> bool:
    return segment.startswith(WILDCARD_PREFIX)


def parse_pattern(pattern) -> tuple[str, ...]:
    """
    Parse a rule pattern such as "orders/:id".

    Raises ConfigurationError for anything that can't be matched
    unambiguously: non-strings, empty patterns, empty segments, a bare ":"
    or characters outside the URL-safe set.
    """
    if not isinstance(pattern, str):
        raise ConfigurationError(f"Rule path must be a string, got {pattern!r}")

    segments = split_path(pattern)
    if not segments:
        raise ConfigurationError(f"Rule path {pattern!r} is empty")

    for segment in segments:
        if is_wildcard(segment):
            if not _WILDCARD_SEGMENT.match(segment):
                raise ConfigurationError(f"Rule path {pattern!r} has malformed wildcard {segment!r}")
        elif not _LITERAL_SEGMENT.match(segment):
            raise ConfigurationError(f"Rule path {pattern!r} has malformed segment {segment!r}")

    return segments


def segments_match(rule_segments: tuple[str, ...], path_segments: tuple[str, ...]) -> bool:
    if len(rule_segments) != len(path_segments):
        return False
    for expected, actual in zip(rule_segments, path_segments):
        if not actual:
            return False
        if is_wildcard(expected):
            continue
        if expected != actual:
            return False
    return True
