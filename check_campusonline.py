#!/usr/bin/env python3
"""
Nagios Plugin for CAMPUSonline
Walks through the CAMPUSonline portal login (session and login cookies,
login form) and checks that the business card of the user is shown
afterwards. The duration of the whole login is checked against the
thresholds.

Dependencies:
- requests
- lxml

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import re
import sys
import time

import requests

from nagios_common import (
    NAGIOS_CRITICAL, CheckResult, NagiosArgumentParser, PluginExit, Threshold,
    add_common_arguments, add_threshold_arguments, latency_result, milliseconds_since, run_plugin,
)
from nagios_http import (
    FormNotFound, add_http_arguments, build_url, check_response, create_session, fetch_page,
    submit_form,
)

SHORTNAME = "CAMPUSONLINE"
VERSION = "1.0"
DEFAULT_PATH = "mug_online"
LOGIN_QUERY = "ctxid=check&cusergroup=&cinframe=&curl="
BUSINESS_CARD_PATTERN = re.compile(r'Visitenkarte von (\w+), (\w+)')


def logged_in_user(content: str, login: str):
    """Return (first, last) name shown on the business card after login"""
    match = BUSINESS_CARD_PATTERN.search(content)
    if not match:
        raise PluginExit(NAGIOS_CRITICAL, f"Could not authenticate as {login}")
    last_name, first_name = match.groups()
    return first_name, last_name


def check_campusonline(args) -> CheckResult:
    """Log into CAMPUSonline and return Nagios result"""
    base = build_url(args.host, args.path, args.ssl, args.port, args.ip).rstrip('/')
    threshold = Threshold.from_args(args)
    session = create_session(host=args.host, ip=args.ip, user_agent=SHORTNAME,
                             verify=not args.insecure, debug=args.debug,
                             port=args.port, ssl=args.ssl)

    start = time.perf_counter()
    # Session cookie, then login cookie, then the login page itself
    fetch_page(session, f"{base}/webnav.ini", args.timeout, args.verbose)
    fetch_page(session, f"{base}/wbanmeldung.durchfuehren", args.timeout, args.verbose)
    page = fetch_page(session, f"{base}/wbanmeldung.durchfuehren?{LOGIN_QUERY}",
                      args.timeout, args.verbose)

    if args.verbose:
        print(f"DEBUG: Cookies: {session.cookies.get_dict()}")
        print("DEBUG: Submitting form")
    try:
        result = submit_form(session, page, 'dia', {'cp1': args.login, 'cp2': args.password},
                             args.timeout)
    except FormNotFound as e:
        return NAGIOS_CRITICAL, str(e), []
    except requests.exceptions.RequestException as e:
        return NAGIOS_CRITICAL, f"Could not submit login form: {e}", []
    check_response(result)

    first_name, last_name = logged_in_user(result.text, args.login)
    return latency_result(milliseconds_since(start), threshold, f" for {first_name} {last_name}")


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to perform a login on a CAMPUSonline portal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H online.example.com -s -l nagios -p secret -w 3000 -c 10000
  %(prog)s -H online.example.com -I 10.0.0.9 -s --path co_online -l nagios -p secret -w 3000 -c 10000
        """
    )
    add_http_arguments(parser, path_required=False, default_path=DEFAULT_PATH,
                       service="CAMPUSonline")
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION)
    args = parser.parse_args(argv)
    if not args.login or not args.password:
        parser.error("login (-l) and password (-p) are required")
    return args


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_campusonline, args))


if __name__ == "__main__":
    main()
