#!/usr/bin/env python3
"""
Shared helpers for the service check plugins.
Threshold ranges, performance data, result aggregation and the plugin runner
that turns a check's result into Nagios plugin output and exit code.

Range syntax follows the Nagios plugin development guidelines:
  10      alert if x < 0 or x > 10
  10:     alert if x < 10
  ~:10    alert if x > 10
  10:20   alert if x < 10 or x > 20
  @10:20  alert if 10 <= x <= 20

Dependencies:
  - nagiosplugin: pip install nagiosplugin

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import math
import sys
import time
import traceback
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple, Union

import nagiosplugin
from nagiosplugin.platform import with_timeout
from nagiosplugin.state import Critical, Ok, Unknown, Warn, worst as worst_state

# Nagios exit codes
NAGIOS_OK = 0
NAGIOS_WARNING = 1
NAGIOS_CRITICAL = 2
NAGIOS_UNKNOWN = 3

STATUS_TEXT = {
    NAGIOS_OK: "OK",
    NAGIOS_WARNING: "WARNING",
    NAGIOS_CRITICAL: "CRITICAL",
    NAGIOS_UNKNOWN: "UNKNOWN",
}

SERVICE_STATES = {state.code: state for state in (Ok, Warn, Critical, Unknown)}

Number = Union[int, float]


class RangeError(ValueError):
    """Raised for threshold range expressions that cannot be parsed"""


class PluginExit(Exception):
    """Terminate the check immediately with the given status"""

    def __init__(self, code: int, message: str, perfdata: Optional[List["Perfdata"]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.perfdata = perfdata or []


def format_number(value) -> str:
    """Render a number for perfdata: no exponent, no trailing zeros"""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return str(value)


class Range:
    """A single Nagios threshold range, evaluated by nagiosplugin.Range

    Unbounded ends are -inf/inf. alert() is True for values outside the
    range, or inside it for "@" ranges.
    """

    def __init__(self, spec: Union[str, Number]):
        if isinstance(spec, (int, float)):
            text = format_number(spec)
        else:
            text = str(spec).strip()
        if not text.lstrip('@'):
            raise RangeError(f"Invalid range: '{spec}'")
        try:
            self.range = nagiosplugin.Range(text)
        except ValueError as e:
            raise RangeError(f"Invalid range: '{spec}' ({e})") from e

    @property
    def start(self) -> Number:
        return self.range.start

    @property
    def end(self) -> Number:
        return self.range.end

    @property
    def invert(self) -> bool:
        return self.range.invert

    def alert(self, value: Number) -> bool:
        """True if the value should raise an alert for this range"""
        return not self.range.match(value)

    def __str__(self) -> str:
        return str(self.range)

    def __repr__(self) -> str:
        return f"Range('{self}')"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Range):
            return NotImplemented
        return self.range == other.range


def _coerce_range(value) -> Optional[Range]:
    if value is None or value == '':
        return None
    if isinstance(value, Range):
        return value
    return Range(value)


class Threshold:
    """Warning and critical ranges evaluated together"""

    def __init__(self, warning=None, critical=None):
        self.warning = _coerce_range(warning)
        self.critical = _coerce_range(critical)

    def check(self, value: Number) -> int:
        if self.critical is not None and self.critical.alert(value):
            return NAGIOS_CRITICAL
        if self.warning is not None and self.warning.alert(value):
            return NAGIOS_WARNING
        return NAGIOS_OK

    @classmethod
    def from_args(cls, args) -> "Threshold":
        return cls(getattr(args, 'warning', None), getattr(args, 'critical', None))


@dataclass
class Perfdata:
    """One label=value;warn;crit;min;max performance data item"""
    label: str
    value: Number
    uom: str = ''
    threshold: Optional[Threshold] = None
    minimum: Optional[Number] = None
    maximum: Optional[Number] = None

    def performance(self) -> nagiosplugin.Performance:
        warning = critical = ''
        if self.threshold is not None:
            warning = self.threshold.warning or ''
            critical = self.threshold.critical or ''
        return nagiosplugin.Performance(
            self.label,
            format_number(self.value),
            self.uom,
            warning,
            critical,
            format_number(self.minimum) if self.minimum is not None else '',
            format_number(self.maximum) if self.maximum is not None else '',
        )

    def __str__(self) -> str:
        return str(self.performance())


def worst(codes: Iterable[int]) -> int:
    """Reduce exit codes to the most significant one"""
    return worst_state([SERVICE_STATES[code] for code in codes]).code


class ResultSet:
    """Collect several partial results and report them as one"""

    def __init__(self):
        self.results: List[Tuple[int, str]] = []

    def add(self, code: int, message: str):
        self.results.append((code, message))

    @property
    def code(self) -> int:
        return worst(code for code, _ in self.results)

    def message(self, separator: str = '; ') -> str:
        return separator.join(message for _, message in self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)


CheckResult = Tuple[int, str, List[Perfdata]]


def render_output(shortname: str, code: int, message: str, perfdata: Optional[List[Perfdata]] = None) -> str:
    """Build plugin output: status line with perfdata, then any long output"""
    lines = message.split('\n')
    status_line = f"{shortname} {STATUS_TEXT.get(code, 'UNKNOWN')} - {lines[0]}"
    if perfdata:
        status_line += " | " + " ".join(str(item) for item in perfdata)
    return '\n'.join([status_line] + lines[1:])


def milliseconds_since(start: float) -> float:
    """Elapsed milliseconds since a time.perf_counter() reading"""
    return (time.perf_counter() - start) * 1000


def latency_result(elapsed: float, threshold: Threshold, suffix: str = '') -> CheckResult:
    """Result of a timed transaction: threshold on the elapsed milliseconds"""
    code = threshold.check(elapsed)
    perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]
    if code != NAGIOS_OK:
        return code, f"Check took too long with {elapsed:.0f}ms{suffix}", perfdata
    return code, f"Check finished in {elapsed:.0f}ms{suffix}", perfdata


def _call_check(check: Callable[[argparse.Namespace], CheckResult], args, timeout) -> CheckResult:
    """Call the check, within nagiosplugin's timeout guard when a limit is set"""
    if not timeout:
        return check(args)
    outcome = []
    with_timeout(math.ceil(timeout), lambda: outcome.append(check(args)))
    return outcome[0]


def run_plugin(shortname: str, check: Callable[[argparse.Namespace], CheckResult], args) -> int:
    """Run a check, print its output and return the exit code"""
    timeout = getattr(args, 'timeout', None)

    try:
        code, message, perfdata = _call_check(check, args, timeout)
    except PluginExit as e:
        code, message, perfdata = e.code, e.message, e.perfdata
    except nagiosplugin.Timeout:
        code, message, perfdata = NAGIOS_UNKNOWN, f"Plugin timed out after {timeout} seconds", []
    except Exception as e:
        if getattr(args, 'verbose', False):
            traceback.print_exc()
        code, message, perfdata = NAGIOS_UNKNOWN, f"Unexpected error: {e}", []

    print(render_output(shortname, code, message, perfdata))
    return code


class NagiosArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors as UNKNOWN"""

    def error(self, message):
        self.print_usage(sys.stderr)
        print(f"UNKNOWN - {self.prog}: {message}")
        sys.exit(NAGIOS_UNKNOWN)


def parse_range(text: str) -> Range:
    """argparse type for threshold ranges"""
    try:
        return Range(text)
    except RangeError as e:
        raise argparse.ArgumentTypeError(str(e))


THRESHOLD_HELP = ("See https://www.monitoring-plugins.org/doc/guidelines.html#THRESHOLDFORMAT "
                  "for the threshold format.")


def add_threshold_arguments(parser: argparse.ArgumentParser, required: bool = True,
                            type_=parse_range, unit: str = ''):
    """Add -w/--warning and -c/--critical"""
    unit_help = f" ({unit})" if unit else ''
    parser.add_argument(
        "-w", "--warning",
        required=required,
        type=type_,
        help=f"Warning threshold{unit_help}. {THRESHOLD_HELP}"
    )
    parser.add_argument(
        "-c", "--critical",
        required=required,
        type=type_,
        help=f"Critical threshold{unit_help}. {THRESHOLD_HELP}"
    )


def add_common_arguments(parser: argparse.ArgumentParser, version: str, timeout: int = 15):
    """Add -t/--timeout, -v/--verbose and -V/--version"""
    parser.add_argument(
        "-t", "--timeout",
        type=int,
        default=timeout,
        help=f"Seconds before the plugin times out (default: {timeout})"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output for debugging"
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {version}"
    )
