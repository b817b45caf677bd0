#!/usr/bin/env python3
"""
Nagios Plugin for GroupWise WebAccess
Logs into the GroupWise 8 or 2012 web mail interface with the given
credentials and checks how long the login takes.

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
    FormNotFound, build_url, check_response, create_session, fetch_page, submit_form,
)

VERSION = "1.0"
BROWSER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:24.0) Gecko/20100101 Firefox/24.0 Iceweasel/24.0"

RELEASES = {
    '8': {
        'shortname': "GROUPWISE 8 WEBMAIL",
        'title': re.compile(r'<TITLE>Novell WebAccess \((\w+) (\w+)\)</TITLE>', re.IGNORECASE),
        'check_userid': False,
    },
    '2012': {
        'shortname': "GROUPWISE 2012 WEBMAIL",
        'title': re.compile(r'<TITLE>Novell GroupWise \((\w+) (\w+)\)</TITLE>', re.IGNORECASE),
        'check_userid': True,
    },
}
USERID_PATTERN = re.compile(r'var userId = "(\w+)";')


def authenticated_user(content: str, login: str, release: str):
    """Return (first, last) name of the logged in user from the mailbox page"""
    settings = RELEASES[release]
    failure = PluginExit(NAGIOS_CRITICAL, f"Could not authenticate as {login}")

    if settings['check_userid']:
        match = USERID_PATTERN.search(content)
        if not match or match.group(1) != login:
            raise failure

    match = settings['title'].search(content)
    if not match:
        raise failure
    return match.group(1), match.group(2)


def check_groupwise_webmail(args) -> CheckResult:
    """Log into GroupWise WebAccess and return Nagios result"""
    port = args.port or (443 if args.ssl else 80)
    url = build_url(args.host, args.url, args.ssl, port)
    threshold = Threshold.from_args(args)
    session = create_session(user_agent=BROWSER_AGENT, debug=args.debug)

    start = time.perf_counter()
    page = fetch_page(session, url, args.timeout, args.verbose)

    if args.verbose:
        print("DEBUG: Submitting form")
    try:
        result = submit_form(session, page, 'loginForm',
                             {'User.id': args.login, 'User.password': args.password},
                             args.timeout)
    except FormNotFound as e:
        return NAGIOS_CRITICAL, str(e), []
    except requests.exceptions.RequestException as e:
        return NAGIOS_CRITICAL, f"Could not submit login form: {e}", []
    check_response(result)

    first_name, last_name = authenticated_user(result.text, args.login, args.release)
    return latency_result(milliseconds_since(start), threshold, f" for {first_name} {last_name}")


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to perform authentication on the GroupWise web mail interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H mail.example.com -l jdoe -p secret -w 3000 -c 10000
  %(prog)s -H mail.example.com -s -R 8 -u servlet/webacc -l jdoe -p secret -w 3000 -c 10000
        """
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host to connect to"
    )
    parser.add_argument(
        "-l", "--login",
        required=True,
        help="Username to login"
    )
    parser.add_argument(
        "-p", "--password",
        required=True,
        help="Password used for authentication"
    )
    parser.add_argument(
        "-P", "--port",
        type=int,
        help="Port of the web server (default: 80, 443 with --ssl)"
    )
    parser.add_argument(
        "-u", "--url",
        default="gw/webacc",
        help="URL path of WebAccess (default: gw/webacc)"
    )
    parser.add_argument(
        "-s", "--ssl",
        action="store_true",
        help="Use SSL (HTTPS)"
    )
    parser.add_argument(
        "-R", "--release",
        choices=sorted(RELEASES),
        default="2012",
        help="GroupWise release (default: 2012)"
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Print HTTP requests and responses"
    )
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    shortname = RELEASES[args.release]['shortname']
    sys.exit(run_plugin(shortname, check_groupwise_webmail, args))


if __name__ == "__main__":
    main()
