#!/usr/bin/env python3
"""
Nagios Plugin for nginx Monitoring
Reads the nginx stub_status page and reports active connections or the
connection/request rate since the previous run.

Rates need the counters of the previous run, which are kept in a small
state file per status page (see --store).

Dependencies:
- requests

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import os
import re
import sys
import time
from typing import Dict
from urllib.parse import quote, urlsplit

import requests

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata,
    PluginExit, Threshold, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_http import add_http_arguments, build_url, session_from_args, timed_request
from nagios_store import StateStore

SHORTNAME = "nginx"
VERSION = "1.0"
DEFAULT_STORE = "/var/cache/monitoring/nginx"

STATUS_PATTERN = re.compile(
    r'^Active connections:\s*(?P<active>\d+)\s+'
    r'server accepts handled requests\s+(?P<accepts>\d+)\s+(?P<handled>\d+)\s+(?P<requests>\d+)',
    re.MULTILINE
)


def parse_stub_status(content: str) -> Dict[str, int]:
    """Extract the counters from a stub_status page"""
    match = STATUS_PATTERN.search(content)
    if not match:
        raise PluginExit(NAGIOS_UNKNOWN, 'Unexpected nginx status page format')
    return {key: int(value) for key, value in match.groupdict().items()}


def store_filename(store: str, url: str) -> str:
    parts = urlsplit(url)
    return os.path.join(store, f"{parts.scheme}-{parts.netloc}-{quote(parts.path, safe='')}.db")


def rate(stats: Dict[str, int], previous: Dict[str, str], key: str, now: float) -> float:
    """Average increase per second of a counter since the previous sample"""
    elapsed = now - float(previous['timestamp'])
    if elapsed <= 0:
        raise PluginExit(NAGIOS_UNKNOWN, 'No time elapsed since the previous sample')

    delta = stats[key] - int(previous[key])
    if delta < 0:
        raise PluginExit(NAGIOS_UNKNOWN, f"Counter '{key}' was reset since the previous sample")
    return delta / elapsed


def check_connections(stats, previous, now, threshold: Threshold) -> CheckResult:
    active = stats['active']
    perfdata = [Perfdata('Connections', active, 'connections', threshold)]
    return threshold.check(active), f"{active} connections", perfdata


def check_connection_rate(stats, previous, now, threshold: Threshold) -> CheckResult:
    average = rate(stats, previous, 'accepts', now)
    perfdata = [Perfdata('Connections per Second', average, 'c/s', threshold)]
    return threshold.check(average), f"{average:.2f} connections per second", perfdata


def check_request_rate(stats, previous, now, threshold: Threshold) -> CheckResult:
    average = rate(stats, previous, 'requests', now)
    perfdata = [Perfdata('Requests per Second', average, 'r/s', threshold)]
    return threshold.check(average), f"{average:.2f} requests per second", perfdata


MODES = {
    'connections': check_connections,
    'connections/sec': check_connection_rate,
    'requests/sec': check_request_rate,
}


def check_nginx(args) -> CheckResult:
    """Check nginx stub_status and return Nagios result"""
    session = session_from_args(args, user_agent=SHORTNAME)
    url = build_url(args.host, args.path, args.ssl, args.port, args.ip)

    if args.verbose:
        print(f"DEBUG: Fetching {url}")

    try:
        response, _ = timed_request(session, 'GET', url, args.timeout)
    except requests.exceptions.RequestException as e:
        return NAGIOS_CRITICAL, f"Unable to fetch nginx status response: {e}", []

    if not response.ok:
        return NAGIOS_CRITICAL, 'Unable to fetch nginx status response', []

    stats = parse_stub_status(response.text)
    filename = store_filename(args.store, url)
    now = time.time()

    if args.verbose:
        print(f"DEBUG: Counters: {stats}")
        print(f"DEBUG: Persistent store: {filename}")

    # Every run replaces the stored sample with the current one
    with StateStore(filename) as store:
        previous = store.items()
        store.update(dict(stats, timestamp=now))

    if 'timestamp' not in previous:
        return NAGIOS_UNKNOWN, f"No previous data found in file {filename}", []

    return MODES[args.mode](stats, previous, now, Threshold.from_args(args))


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to monitor nginx through its stub_status page",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  connections      currently active connections
  connections/sec  accepted connections per second since the previous run
  requests/sec     requests per second since the previous run

Examples:
  %(prog)s -H www.example.com --path /nginx_status -m connections -w 500 -c 1000
  %(prog)s -H www.example.com --path /nginx_status -m requests/sec -w 200 -c 400
  %(prog)s -H www.example.com --path /nginx_status -m connections/sec -w 50 -c 100 -S /tmp/nginx
        """
    )
    add_http_arguments(parser, service="nginx")
    parser.add_argument(
        "-m", "--mode",
        required=True,
        choices=sorted(MODES),
        help="Check mode"
    )
    parser.add_argument(
        "-S", "--store",
        default=DEFAULT_STORE,
        help=f"Directory where the counters of the previous run are stored (default: {DEFAULT_STORE})"
    )
    add_threshold_arguments(parser)
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_nginx, args))


if __name__ == "__main__":
    main()
