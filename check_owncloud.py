#!/usr/bin/env python3
"""
Nagios Plugin for OwnCloud Monitoring
Fetches the OwnCloud status page (status.php) and reports installation,
maintenance state and response latency.

Dependencies:
- requests

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import sys

import requests

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_UNKNOWN, NAGIOS_WARNING, CheckResult, NagiosArgumentParser,
    Perfdata, Threshold, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_http import add_http_arguments, build_url, session_from_args, timed_request

SHORTNAME = "OwnCloud"
VERSION = "1.0"


def check_status(status: dict, elapsed: float, threshold: Threshold) -> CheckResult:
    """Evaluate a decoded status.php document"""
    version = status.get('versionstring') or status.get('version', 'unknown')
    perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]

    if not status.get('installed'):
        return NAGIOS_UNKNOWN, f"OwnCloud {version}: Not installed", perfdata

    # Older releases spell the key "maintainance"
    if status.get('maintenance') or status.get('maintainance'):
        return NAGIOS_WARNING, f"OwnCloud {version}: Maintenance active", perfdata

    if status.get('needsDbUpgrade'):
        return NAGIOS_WARNING, f"OwnCloud {version}: Database upgrade required", perfdata

    return threshold.check(elapsed), f"OwnCloud {version}: Status retrieved", perfdata


MODES = {
    'status': check_status,
}


def check_owncloud(args) -> CheckResult:
    """Check OwnCloud status page and return Nagios result"""
    session = session_from_args(args, user_agent=SHORTNAME)
    url = build_url(args.host, args.path, args.ssl, args.port, args.ip)

    if args.verbose:
        print(f"DEBUG: Fetching {url}")

    try:
        response, elapsed = timed_request(session, 'GET', url, args.timeout)
    except requests.exceptions.RequestException as e:
        return NAGIOS_CRITICAL, f"Unable to fetch OwnCloud status response: {e}", []

    if not response.ok:
        return NAGIOS_CRITICAL, 'Unable to fetch OwnCloud status response', []

    try:
        status = response.json()
    except ValueError:
        return NAGIOS_UNKNOWN, 'OwnCloud status response is not valid JSON', []

    if args.verbose:
        print(f"DEBUG: Status: {status}")

    return MODES[args.mode](status, elapsed, Threshold.from_args(args))


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to monitor OwnCloud instances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H cloud.example.com -s --path /status.php -m status -w 500 -c 2000
  %(prog)s -H cloud.example.com -I 10.0.0.7 -s --path /owncloud/status.php -m status -w 500 -c 2000
        """
    )
    add_http_arguments(parser, service="OwnCloud")
    parser.add_argument(
        "-m", "--mode",
        default="status",
        choices=sorted(MODES),
        help="Check mode (default: status)"
    )
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_owncloud, args))


if __name__ == "__main__":
    main()
