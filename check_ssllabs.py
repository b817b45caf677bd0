#!/usr/bin/env python3
"""
Nagios Plugin for Qualys SSL Labs
Runs (or fetches a cached) SSL Labs server test for a host and checks the
grade of every endpoint against the warning and critical grades.

Grades from best to worst: A+ A A- B C D E F T M

An assessment can take several minutes, hence the long default timeout.

Dependencies:
- requests

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import sys
import time

import requests

from nagios_common import (
    NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, PluginExit, Range, ResultSet, Threshold,
    add_common_arguments, run_plugin,
)
from nagios_http import create_session

SHORTNAME = "SSLLabs"
VERSION = "1.0"
API_URL = "https://api.ssllabs.com/api/v3"
GRADES = ['A+', 'A', 'A-', 'B', 'C', 'D', 'E', 'F', 'T', 'M']
FINISHED = ('READY', 'ERROR')


class SSLLabsClient:
    """Client for the SSL Labs assessment API"""

    def __init__(self, api_url: str = API_URL, timeout: float = 30, verbose: bool = False):
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.verbose = verbose
        self.session = create_session(user_agent=f"check_ssllabs/{VERSION}")

    def call(self, command: str, **params) -> dict:
        response = self.session.get(f"{self.api_url}/{command}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def info(self) -> dict:
        try:
            return self.call('info')
        except (requests.exceptions.RequestException, ValueError) as e:
            if self.verbose:
                print(f"DEBUG: info failed: {e}")
            raise PluginExit(NAGIOS_UNKNOWN, 'SSLLabs system not available.')

    def analyze(self, host: str, publish: bool, from_cache: bool, max_age: int) -> dict:
        params = {
            'host': host,
            'publish': 'on' if publish else 'off',
            'all': 'done',
        }
        if from_cache:
            params['fromCache'] = 'on'
            params['maxAge'] = max_age
        try:
            return self.call('analyze', **params)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise PluginExit(NAGIOS_UNKNOWN, f"Could not query SSLLabs for {host}: {e}")

    def assess(self, host: str, publish: bool, from_cache: bool, max_age: int,
               poll_interval: int) -> dict:
        """Poll until the assessment is finished"""
        while True:
            report = self.analyze(host, publish, from_cache, max_age)
            if report.get('status') in FINISHED:
                return report
            eta = max([endpoint.get('eta', 0) for endpoint in report.get('endpoints', [])] + [0])
            delay = min(max(eta, 1), poll_interval)
            if self.verbose:
                print(f"DEBUG: Status {report.get('status')}, sleeping for {delay} seconds")
            time.sleep(delay)


def grade_threshold(warning: str, critical: str) -> Threshold:
    warning_index = GRADES.index(warning)
    critical_index = GRADES.index(critical)
    if critical_index < warning_index:
        raise PluginExit(
            NAGIOS_UNKNOWN,
            f"Critical grade ({critical}) must be worse or equal to warning grade ({warning})."
        )
    return Threshold(Range(warning_index), Range(critical_index))


def evaluate(report: dict, threshold: Threshold, verbose: bool = False) -> CheckResult:
    if report.get('status') != 'READY':
        return (NAGIOS_UNKNOWN,
                f"{report.get('host')} failed to test: {report.get('statusMessage', 'unknown error')}",
                [])

    results = ResultSet()
    errors = []
    for endpoint in report.get('endpoints', []):
        address = endpoint.get('ipAddress')
        grade = endpoint.get('grade')
        if grade in GRADES:
            if verbose:
                print(f"DEBUG: Endpoint {address} rated: {grade}")
            results.add(threshold.check(GRADES.index(grade)), f"{address}: {grade}")
        else:
            if verbose:
                print(f"DEBUG: Endpoint {address} failed: {endpoint.get('statusMessage')}")
            errors.append(f"{address}: {endpoint.get('statusMessage')}")

    if errors:
        return (NAGIOS_UNKNOWN,
                "One or more endpoints could not be tested:\n - " + "\n - ".join(errors),
                [])
    if not len(results):
        return NAGIOS_UNKNOWN, f"No endpoints found for {report.get('host')}", []
    return results.code, "SSLLabs test results:\n - " + results.message("\n - "), []


def check_ssllabs(args) -> CheckResult:
    """Run an SSL Labs assessment and return Nagios result"""
    threshold = grade_threshold(args.warning, args.critical)
    client = SSLLabsClient(args.api_url, verbose=args.verbose)

    if args.verbose:
        print(f"DEBUG: Connecting to Qualys SSLLabs to test {args.host}")

    info = client.info()
    if args.verbose:
        print(f"DEBUG: Using rating criteria {info.get('criteriaVersion')}")
    if info.get('currentAssessments', 0) >= info.get('maxAssessments', 1):
        return (NAGIOS_UNKNOWN,
                f"Maximum concurrent assessments reached: {info.get('maxAssessments')}.",
                [])

    report = client.assess(args.host, args.publish, args.cache, args.max_age, args.poll_interval)
    return evaluate(report, threshold, args.verbose)


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to check the Qualys SSL Labs grade of a host",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H www.example.com -w A -c B
  %(prog)s -H www.example.com -w A- -c C -C -m 24
        """
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host to test"
    )
    parser.add_argument(
        "-w", "--warning",
        required=True,
        choices=GRADES,
        help="Worst grade that is still OK"
    )
    parser.add_argument(
        "-c", "--critical",
        required=True,
        choices=GRADES,
        help="Worst grade that is still not CRITICAL"
    )
    parser.add_argument(
        "-C", "--cache",
        action="store_true",
        help="Accept cached assessment results"
    )
    parser.add_argument(
        "-m", "--max-age",
        type=int,
        default=48,
        help="Maximum age of cached results in hours (default: 48)"
    )
    parser.add_argument(
        "-p", "--publish",
        action="store_true",
        help="Publish the results on the SSL Labs boards"
    )
    parser.add_argument(
        "--api-url",
        default=API_URL,
        help=f"SSL Labs API endpoint (default: {API_URL})"
    )
    parser.add_argument(
        "--poll-interval",
        type=int,
        default=30,
        help="Maximum seconds between status requests (default: 30)"
    )
    add_common_arguments(parser, VERSION, timeout=600)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_ssllabs, args))


if __name__ == "__main__":
    main()
