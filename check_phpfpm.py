#!/usr/bin/env python3
"""
Nagios Plugin for PHP-FPM Monitoring
Checks the PHP-FPM ping page or the listen queue / active process maxima
reported on the status page.

Dependencies:
- requests
- lxml

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import sys
from typing import Dict, Tuple

import requests
from lxml import etree

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata,
    PluginExit, Threshold, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_http import add_http_arguments, build_url, session_from_args, timed_request

SHORTNAME = "PHP-FPM"
VERSION = "1.0"


class PhpFpmMonitor:
    """PHP-FPM ping/status page client"""

    def __init__(self, args):
        self.args = args
        self.verbose = args.verbose
        self.session = session_from_args(args, user_agent=f"check_phpfpm/{VERSION}")

    def fetch(self, query: str = None) -> Tuple[requests.Response, float]:
        url = build_url(self.args.host, self.args.path, self.args.ssl, self.args.port,
                        self.args.ip, query)
        if self.verbose:
            print(f"DEBUG: Fetching {url}")

        try:
            response, elapsed = timed_request(self.session, 'GET', url, self.args.timeout)
        except requests.exceptions.RequestException as e:
            raise PluginExit(NAGIOS_CRITICAL, f"Unable to fetch FPM response: {e}")

        if response.status_code != 200:
            raise PluginExit(NAGIOS_CRITICAL, 'Unable to fetch FPM response')
        return response, elapsed

    def status(self) -> Dict[str, str]:
        """Fetch the status page in XML format as a flat dict"""
        response, _ = self.fetch('xml')
        try:
            root = etree.fromstring(response.content)
        except etree.XMLSyntaxError as e:
            raise PluginExit(NAGIOS_UNKNOWN, f"Invalid status page: {e}")

        status = {child.tag: (child.text or '').strip() for child in root}
        if self.verbose:
            print(f"DEBUG: Status: {status}")
        return status


def _status_int(status: Dict[str, str], key: str) -> int:
    try:
        return int(status[key])
    except (KeyError, ValueError):
        raise PluginExit(NAGIOS_UNKNOWN, f"Status page provides no value for {key}")


def check_ping(monitor: PhpFpmMonitor, threshold: Threshold) -> CheckResult:
    response, elapsed = monitor.fetch()
    if response.text.strip() != 'pong':
        return NAGIOS_CRITICAL, 'Invalid response to PING request', []

    perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]
    return (threshold.check(elapsed),
            f"Received PING response in {elapsed:.0f} milliseconds",
            perfdata)


def check_queue(monitor: PhpFpmMonitor, threshold: Threshold) -> CheckResult:
    status = monitor.status()
    pending = _status_int(status, 'listen-queue')
    maximum = _status_int(status, 'max-listen-queue')
    perfdata = [
        Perfdata('Pending', pending, 'requests'),
        Perfdata('Maximum', maximum, 'requests', threshold),
    ]
    return (threshold.check(maximum),
            f"{status.get('pool', 'unknown')}: maximum requests in queue: {maximum}",
            perfdata)


def check_processes(monitor: PhpFpmMonitor, threshold: Threshold) -> CheckResult:
    status = monitor.status()
    active = _status_int(status, 'active-processes')
    maximum = _status_int(status, 'max-active-processes')
    perfdata = [
        Perfdata('Active', active, 'processes'),
        Perfdata('Maximum', maximum, 'processes', threshold),
    ]
    return (threshold.check(maximum),
            f"{status.get('pool', 'unknown')}: maximum active processes: {maximum}",
            perfdata)


MODES = {
    'ping': check_ping,
    'queue': check_queue,
    'processes': check_processes,
}


def check_phpfpm(args) -> CheckResult:
    """Check PHP-FPM and return Nagios result"""
    monitor = PhpFpmMonitor(args)
    return MODES[args.mode](monitor, Threshold.from_args(args))


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to monitor PHP-FPM pools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  ping       check if php-fpm answers on its ping page
  queue      check the maximum recorded number of requests waiting in the queue
  processes  check the maximum recorded number of active processes

Examples:
  %(prog)s -H www.example.com --path /fpm-ping -m ping -w 100 -c 500
  %(prog)s -H www.example.com --path /fpm-status -m queue -w 5 -c 10
  %(prog)s -H www.example.com -I 10.0.0.5 --path /fpm-status -m processes -w 40 -c 50
        """
    )
    add_http_arguments(parser, service="PHP-FPM")
    parser.add_argument(
        "-m", "--mode",
        required=True,
        choices=sorted(MODES),
        help="Check mode"
    )
    add_threshold_arguments(parser)
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_phpfpm, args))


if __name__ == "__main__":
    main()
