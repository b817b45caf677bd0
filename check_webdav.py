#!/usr/bin/env python3
"""
Nagios Plugin for WebDAV Servers
Performs a read/write/delete cycle on a WebDAV collection: creates a
"nagios" sub collection, uploads a random file, downloads and compares it
and removes both again. The duration of the whole cycle is checked
against the thresholds.

Dependencies:
- requests

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import os
import sys
import time

import requests

from nagios_common import (
    NAGIOS_CRITICAL, CheckResult, NagiosArgumentParser, PluginExit, Threshold,
    add_common_arguments, add_threshold_arguments, latency_result, milliseconds_since, run_plugin,
)
from nagios_http import build_url, create_session, describe_status

SHORTNAME = "WebDAV"
VERSION = "1.0"
TEST_COLLECTION = "nagios"
TEST_FILE = "testfile.nagios"
TEST_SIZE = 128


class WebDavClient:
    """Minimal WebDAV client on top of a requests session"""

    def __init__(self, session: requests.Session, timeout: float, verbose: bool = False):
        self.session = session
        self.timeout = timeout
        self.verbose = verbose

    def request(self, method: str, url: str, failure: str, **kwargs) -> requests.Response:
        """Perform one request, any error status ends the check as CRITICAL"""
        if self.verbose:
            print(f"DEBUG: {method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise PluginExit(NAGIOS_CRITICAL, f"{failure}: {e}")
        if not response.ok:
            raise PluginExit(NAGIOS_CRITICAL, f"{failure}: {describe_status(response)}")
        return response

    def open(self, url: str):
        self.request('PROPFIND', url, f"Couldn't open {url}", headers={'Depth': '0'})

    def mkcol(self, url: str):
        self.request('MKCOL', url, f"Could not create directory {url}")

    def put(self, url: str, data: bytes):
        self.request('PUT', url, f"Could not upload file to {url}", data=data)

    def get(self, url: str) -> bytes:
        return self.request('GET', url, f"Could not download file {url}").content

    def delete(self, url: str):
        self.request('DELETE', url, f"Could not remove {url}")

    def remove_quietly(self, url: str):
        """DELETE after a failed cycle, keeping the error that ended it"""
        try:
            self.delete(url)
        except PluginExit as e:
            if self.verbose:
                print(f"DEBUG: Cleanup failed: {e.message}")


def check_webdav(args) -> CheckResult:
    """Run the WebDAV read/write cycle and return Nagios result"""
    port = args.port or (443 if args.ssl else 80)
    url = build_url(args.host, args.url, args.ssl, port).rstrip('/')
    collection = f"{url}/{TEST_COLLECTION}"
    testfile = f"{collection}/{TEST_FILE}"
    threshold = Threshold.from_args(args)

    session = create_session(login=args.login, password=args.password,
                             user_agent=f"check_webdav/{VERSION}", verify=not args.insecure)
    client = WebDavClient(session, args.timeout, args.verbose)
    data = os.urandom(TEST_SIZE)

    start = time.perf_counter()
    client.open(url)
    client.mkcol(collection)
    removed = False
    try:
        client.put(testfile, data)
        if client.get(testfile) != data:
            return NAGIOS_CRITICAL, 'Downloaded file differs from uploaded one', []
        client.delete(testfile)
        client.delete(collection)
        removed = True
        elapsed = milliseconds_since(start)
    finally:
        # The collection is removed on every path after MKCOL
        if not removed:
            client.remove_quietly(collection)
    return latency_result(elapsed, threshold)


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to perform read/write/delete tests on a WebDAV server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
The check creates the collection <url>/nagios and the file
<url>/nagios/testfile.nagios and removes both when it is done.

Examples:
  %(prog)s -H dav.example.com -l nagios -p secret -u /remote.php/webdav -w 2000 -c 5000
  %(prog)s -H dav.example.com -s -o 8443 -l nagios -p secret -u /user/test -w 2000 -c 5000
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
        "-o", "--port",
        type=int,
        help="Port used by the WebDAV server (default: 80, 443 with --ssl)"
    )
    parser.add_argument(
        "-u", "--url",
        required=True,
        help="URL path for the check (e.g. /user/test)"
    )
    parser.add_argument(
        "-s", "--ssl",
        action="store_true",
        help="Use SSL (HTTPS)"
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Disable SSL certificate verification"
    )
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_webdav, args))


if __name__ == "__main__":
    main()
