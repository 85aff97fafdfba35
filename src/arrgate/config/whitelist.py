"""Whitelist rule parsing for the arrgate.

A rule is either a bare regular expression, allowing every method, or a
method list followed by a colon and the expression::

    ^/api/v3/system/status$
    GET:^/api/v3/series$
    GET, POST:^/api/v3/command$

The method prefix is only recognized when every comma-separated token before
the first colon is an uppercase HTTP method. Anything else is part of the
pattern, so expressions such as ``^/api/v3/movie:\\d+$`` keep their colon.
"""

import re
from typing import Iterable, List, Optional, Tuple

from arrgate.config.models import WhitelistRule
from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

HTTP_METHODS = frozenset({
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "OPTIONS",
    "CONNECT",
    "TRACE",
})


def is_valid_method_spec(spec: str) -> bool:
    """Check that `spec` is a comma-separated list of HTTP methods.

    Tokens may carry surrounding whitespace but must be uppercase.
    """
    if not spec:
        return False
    return all(token.strip() in HTTP_METHODS for token in spec.split(","))


def split_rule(entry: str) -> Tuple[Optional[frozenset], str]:
    """Split a rule entry into its method set and pattern source.

    Returns:
        `Tuple`: (methods or None, pattern).
    """
    spec, sep, pattern = entry.partition(":")
    if sep and is_valid_method_spec(spec):
        methods = frozenset(token.strip() for token in spec.split(","))
        # Whitespace after the colon is not part of the pattern
        return methods, pattern.lstrip()
    return None, entry


def compile_rule(entry: str) -> Optional[WhitelistRule]:
    """Compile a single rule entry.

    Returns None, after logging a warning, when the pattern is not a valid
    regular expression.
    """
    methods, pattern = split_rule(entry)
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        logger.warning(
            "Failed to compile whitelist regex, skipping: %s (%s)", entry, e
        )
        return None
    return WhitelistRule(source=entry, pattern=compiled, methods=methods)


def compile_whitelist(entries: Iterable[str]) -> List[WhitelistRule]:
    """Compile rule entries, preserving their order and dropping bad ones."""
    rules = []
    for entry in entries:
        rule = compile_rule(entry)
        if rule is not None:
            rules.append(rule)
    return rules
