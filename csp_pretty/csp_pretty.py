#!/usr/bin/env -S uv --quiet run --script
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "rich",
#     "tldextract",
# ]
# ///

from __future__ import annotations

import argparse
import base64
import binascii
import enum
import io
import json
import re
import sys
import textwrap
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, TextIO, Tuple

import tldextract
from rich.console import Console
from rich.markup import escape
from rich.text import Text

# ---------------------------------------
# Knowledge base
# ---------------------------------------

# Compared after stripping quotes, so `unsafe-inline` counts as well.
UNSAFE_KEYWORDS = {
    "unsafe-inline",
    "unsafe-eval",
    "unsafe-hashes",
    "unsafe-allow-redirects",
    "wasm-unsafe-eval",
}

SAFE_KEYWORDS = {
    "'self'",
    "'none'",
    "'strict-dynamic'",
    "'report-sample'",
}

# Valid quoted keywords that say nothing about where content may come from.
NEUTRAL_KEYWORDS = {
    "'script'",
    "'allow-duplicates'",
    "'inline-speculation-rules'",
    "'report-sha256'",
    "'report-sha384'",
    "'report-sha512'",
}

# Safe keywords written without their quotes are host names to a browser.
BARE_KEYWORDS = {k.strip("'") for k in SAFE_KEYWORDS}

DIGEST_SIZES: Dict[str, int] = {
    "sha256": 32,
    "sha384": 48,
    "sha512": 64,
}

CSP_HEADER_RE = re.compile(r"(?:x-)?content-security-policy(?:-report-only)?\s*:", re.IGNORECASE)
OTHER_HEADER_RE = re.compile(r"^[A-Za-z0-9_-]+:(?:\s|$)")
# `curl -v` prefixes: `<` response, `>` request, `*` connection info.
CURL_MARKER_RE = re.compile(r"^[<>*](?:\s|$)")

SCHEME_ONLY_RE = re.compile(r"^[a-z][a-z0-9+.-]*:$", re.IGNORECASE)
NONCE_RE = re.compile(r"^'nonce-[A-Za-z0-9+/_-]+={0,2}'$", re.IGNORECASE)
HASH_RE = re.compile(r"^'(sha256|sha384|sha512)-([A-Za-z0-9+/_-]+={0,2})'$", re.IGNORECASE)
HOST_SOURCE_RE = re.compile(
    r"^(?:(?P<scheme>[a-z][a-z0-9+.-]*)://)?"
    r"(?P<host>\*|(?:\*\.)?[a-z0-9-]+(?:\.[a-z0-9-]+)*)"
    r"(?::(?P<port>[0-9]+|\*))?"
    r"(?P<path>/[^\s;,]*)?$",
    re.IGNORECASE,
)
NEAR_MISS_RE = re.compile(r"^(?:nonce|sha256|sha384|sha512)-", re.IGNORECASE)

INDENT = "  "

# Offline: only the public suffix snapshot bundled with tldextract is used.
# Private suffixes (github.io, herokuapp.com) are open to anyone, so they count too.
suffix_extractor = tldextract.TLDExtract(
    cache_dir=None, suffix_list_urls=(), fallback_to_snapshot=True, include_psl_private_domains=True
)

err_console = Console(stderr=True, highlight=False)

# ---------------------------------------
# Data structures
# ---------------------------------------


class Classification(enum.Enum):
    UNSAFE = "unsafe"
    SAFE = "safe"
    UNPARSEABLE = "unparseable"
    NEUTRAL = "neutral"


class Layout(enum.Enum):
    AUTO = "auto"
    SINGLE = "single"
    MULTI = "multi"


STYLES: Dict[Classification, Optional[str]] = {
    Classification.UNSAFE: "red",
    Classification.SAFE: "green",
    Classification.UNPARSEABLE: "black on red",
    Classification.NEUTRAL: None,
}


@dataclass(frozen=True)
class ClassifiedValue:
    raw: str
    classification: Classification


@dataclass(frozen=True)
class Directive:
    name: str
    values: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return self.name.lower()

    def classified(self) -> Tuple[ClassifiedValue, ...]:
        return tuple(ClassifiedValue(raw=v, classification=classify(v)) for v in self.values)


@dataclass(frozen=True)
class Policy:
    directives: Tuple[Directive, ...] = ()

    def __iter__(self) -> Iterator[Directive]:
        return iter(self.directives)

    def __len__(self) -> int:
        return len(self.directives)

    def to_header(self) -> str:
        return "; ".join(" ".join((d.name,) + d.values) for d in self.directives)


# ---------------------------------------
# Line selection
# ---------------------------------------


def select_candidates(
    lines: Iterable[str], on_skip: Optional[Callable[[str], None]] = None
) -> Iterator[str]:
    """
    Yield the CSP strings found in `lines`, lazily and in input order.

    Header lines (`Content-Security-Policy: ...`, also when prefixed the way
    `curl -v` prints them) yield their value. Lines carrying any other header,
    the rest of a `curl -v` transcript and blank lines are dropped; everything
    else is taken as a raw policy.
    """
    for line in lines:
        stripped = line.strip()
        match = CSP_HEADER_RE.search(stripped)
        if match:
            value = stripped[match.end() :].strip()
            if value:
                yield value
                continue
        elif stripped and not CURL_MARKER_RE.match(stripped) and not OTHER_HEADER_RE.match(stripped):
            yield stripped
            continue
        if stripped and on_skip is not None:
            on_skip(stripped)


# ---------------------------------------
# Parsing
# ---------------------------------------


def parse(csp: str) -> Policy:
    directives: List[Directive] = []
    for part in csp.split(";"):
        tokens = part.split()
        if not tokens:
            continue
        name, *values = tokens
        directives.append(Directive(name=name, values=tuple(values)))
    return Policy(directives=tuple(directives))


# ---------------------------------------
# Classification
# ---------------------------------------


def is_wildcard_host(host: str) -> bool:
    """True for `*` and for wildcards spanning a whole public suffix (`*.co.uk`)."""
    if host == "*":
        return True
    if host.startswith("*."):
        return not suffix_extractor(host[2:]).domain
    return False


def is_digest(algorithm: str, value: str) -> bool:
    padded = value.replace("-", "+").replace("_", "/")
    padded += "=" * (-len(padded) % 4)
    try:
        digest = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(digest) == DIGEST_SIZES[algorithm.lower()]


def is_unsafe(token: str) -> bool:
    t = token.lower()
    if t.strip("'\"") in UNSAFE_KEYWORDS:
        return True
    if t == "*" or SCHEME_ONLY_RE.match(t):
        return True
    m = HOST_SOURCE_RE.match(t)
    return bool(m) and is_wildcard_host(m.group("host"))


def is_safe(token: str) -> bool:
    t = token.lower()
    if t in SAFE_KEYWORDS or NONCE_RE.match(token):
        return True
    m = HASH_RE.match(token)
    if m:
        return is_digest(m.group(1), m.group(2))
    m = HOST_SOURCE_RE.match(t)
    if m:
        host = m.group("host")
        return host == "localhost" or "." in host
    return False


def is_near_miss(token: str) -> bool:
    """Tokens that were meant to be a keyword, nonce, hash or URL but are broken."""
    t = token.lower()
    if t in NEUTRAL_KEYWORDS:
        return False
    if t[:1] in {"'", '"'} or t[-1:] in {"'", '"'}:
        return True
    if NEAR_MISS_RE.match(t) or t in BARE_KEYWORDS:
        return True
    return "://" in t


RULES: List[Tuple[Classification, Callable[[str], bool]]] = [
    (Classification.UNSAFE, is_unsafe),
    (Classification.SAFE, is_safe),
    (Classification.UNPARSEABLE, is_near_miss),
]


def classify(token: str) -> Classification:
    for classification, matches in RULES:
        if matches(token):
            return classification
    return Classification.NEUTRAL


# ---------------------------------------
# Renderers
# ---------------------------------------


def make_console(color: str = "auto", file: Optional[TextIO] = None) -> Console:
    if color == "always":
        return Console(
            file=file, force_terminal=True, color_system="standard", no_color=False, highlight=False, emoji=False
        )
    if color == "never":
        return Console(file=file, color_system=None, highlight=False, emoji=False)
    return Console(file=file, highlight=False, emoji=False)


class BaseRenderer:
    def print_many(self, console: Console, policies: Iterable[Policy]) -> int:
        raise NotImplementedError


class TextRenderer(BaseRenderer):
    def __init__(self, layout: Layout = Layout.AUTO):
        self.layout = layout

    def _separator(self, directive: Directive) -> str:
        if self.layout is Layout.MULTI:
            return "\n" + INDENT
        if self.layout is Layout.AUTO and len(directive.values) > 1:
            return "\n" + INDENT
        return " "

    def build(self, policy: Policy) -> Text:
        text = Text(end="")
        for index, directive in enumerate(policy):
            if index:
                text.append(";\n")
            text.append(directive.name, style="bold")
            separator = self._separator(directive)
            for item in directive.classified():
                text.append(separator)
                text.append(item.raw, style=STYLES[item.classification])
        return text

    def print_many(self, console: Console, policies: Iterable[Policy]) -> int:
        printed = 0
        for policy in policies:
            if not policy:
                continue
            if printed:
                console.print()
            console.print(self.build(policy), soft_wrap=True)
            printed += 1
        return printed


class JsonRenderer(BaseRenderer):
    @staticmethod
    def policy_to_dict(policy: Policy) -> Dict:
        return {
            "directives": [
                {
                    "name": d.name,
                    "values": [{"value": v.raw, "classification": v.classification.value} for v in d.classified()],
                }
                for d in policy
            ]
        }

    def print_many(self, console: Console, policies: Iterable[Policy]) -> int:
        printed = 0
        for policy in policies:
            if not policy:
                continue
            console.out(json.dumps(self.policy_to_dict(policy), ensure_ascii=False), highlight=False)
            printed += 1
        return printed


def render(policy: Policy, layout: Layout = Layout.AUTO, color: bool = True) -> str:
    console = make_console("always" if color else "never", file=io.StringIO())
    with console.capture() as capture:
        console.print(TextRenderer(layout).build(policy), soft_wrap=True, end="")
    return capture.get().rstrip("\n")


# ---------------------------------------
# CLI
# ---------------------------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Pretty-print a Content-Security-Policy read from stdin, colorizing risky sources.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
            Examples:
              curl -sI https://example.com | csp-pretty
              echo "default-src 'self'; script-src 'unsafe-inline'" | csp-pretty -m
              csp-pretty --color never < headers.txt
              csp-pretty --format json < headers.txt

            Colors: red = unsafe, green = safe, black on red = malformed.
            """
        ),
    )
    layout = p.add_mutually_exclusive_group()
    layout.add_argument("-m", "--multiline", action="store_true", help="Show one source per line.")
    layout.add_argument("-s", "--single-line", action="store_true", help="Keep all sources on the directive line.")
    p.add_argument(
        "--color",
        choices=["auto", "always", "never"],
        default="auto",
        help="When to emit ANSI colors. Default: auto (honors NO_COLOR and FORCE_COLOR).",
    )
    p.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format. Default: text.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Report skipped input lines on stderr.")
    return p


def _layout_from_args(args: argparse.Namespace) -> Layout:
    if args.multiline:
        return Layout.MULTI
    if args.single_line:
        return Layout.SINGLE
    return Layout.AUTO


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if stdin is None:
        stdin = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8")

    def report_skip(line: str) -> None:
        err_console.print(Text(f"skipped: {line}", style="dim"))

    if args.format == "json":
        renderer: BaseRenderer = JsonRenderer()
    else:
        renderer = TextRenderer(layout=_layout_from_args(args))

    console = make_console(args.color)
    candidates = select_candidates(stdin, on_skip=report_skip if args.verbose else None)
    try:
        renderer.print_many(console, (parse(c) for c in candidates))
    except (OSError, UnicodeDecodeError) as e:
        err_console.print(f"[red]Error:[/red] failed to read input: {escape(str(e))}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
