#!/usr/bin/env python3
"""
Nagios Plugin for Django Monitoring
Queries the JSON view of the django_monitoring app, checks the response
time and reports the object count of each model as performance data.

Dependencies:
- requests

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import sys

import requests

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata,
    Threshold, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_http import add_http_arguments, build_url, session_from_args, timed_request

SHORTNAME = "DJANGO"
VERSION = "1.0"
DEFAULT_URI = "/monitoring"


def model_perfdata(data: dict):
    models = data.get('models') or {}
    return [Perfdata(name, count) for name, count in sorted(models.items())]


def check_django(args) -> CheckResult:
    """Check django_monitoring view and return Nagios result"""
    session = session_from_args(args, user_agent=SHORTNAME)
    url = build_url(args.host, args.path, args.ssl, args.port, args.ip)
    threshold = Threshold.from_args(args)

    if args.verbose:
        print(f"DEBUG: Connecting to django_monitoring on {url} with user {args.login or ''}")

    try:
        response, elapsed = timed_request(session, 'GET', url, args.timeout)
    except requests.exceptions.RequestException as e:
        return NAGIOS_CRITICAL, f"Could not connect to Django: {e}", []

    perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]

    if response.status_code != 200:
        return NAGIOS_CRITICAL, f"Django returned an HTTP error: {response.status_code}", perfdata

    try:
        data = response.json()
    except ValueError:
        return NAGIOS_UNKNOWN, 'Django monitoring response is not valid JSON', perfdata

    perfdata.extend(model_perfdata(data))
    return threshold.check(elapsed), f"Request finished in {elapsed:.0f}ms", perfdata


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to monitor Django installations running django_monitoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H www.example.com -w 1000 -c 3000
  %(prog)s -H www.example.com -I 10.0.0.3 -s -u /admin/monitoring -l nagios -p secret -w 1000 -c 3000
        """
    )
    add_http_arguments(parser, path_required=False, default_path=DEFAULT_URI,
                       service="django_monitoring", path_flags=("-u", "--uri"))
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_django, args))


if __name__ == "__main__":
    main()
