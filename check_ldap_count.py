#!/usr/bin/env python3
"""
Nagios Plugin for LDAP Entry Counts
Counts the entries below a base DN that match an LDAP filter.

Binds anonymously unless a bind DN is given. The bind account only needs
read access to the searched subtree.

Dependencies:
- ldap3

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import sys

import ldap3
from ldap3.core.exceptions import LDAPException

from nagios_common import (
    NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata, Threshold,
    add_common_arguments, add_threshold_arguments, run_plugin,
)

SHORTNAME = "LDAP Count"
VERSION = "1.0"


def count_entries(connection: ldap3.Connection, base: str, search_filter: str) -> int:
    connection.search(base, search_filter, search_scope=ldap3.SUBTREE,
                      attributes=ldap3.NO_ATTRIBUTES)
    return sum(1 for item in connection.response or [] if item.get('type') == 'searchResEntry')


def check_ldap_count(args) -> CheckResult:
    """Count LDAP entries and return Nagios result"""
    port = args.port or (636 if args.ssl else 389)
    server = ldap3.Server(args.host, port=port, use_ssl=args.ssl, connect_timeout=args.timeout)

    if args.verbose:
        print(f"DEBUG: Connecting to {args.host}:{port} as {args.login or 'anonymous'}")

    try:
        if args.login:
            connection = ldap3.Connection(server, user=args.login, password=args.password,
                                          receive_timeout=args.timeout)
        else:
            connection = ldap3.Connection(server, receive_timeout=args.timeout)
        connection.open()
    except LDAPException as e:
        return NAGIOS_UNKNOWN, f"Could not connect to host {args.host}:{port}: {e}", []

    try:
        if not connection.bind():
            return NAGIOS_UNKNOWN, f"Bind failed: {connection.result.get('description')}", []
        count = count_entries(connection, args.base, args.filter)
        if connection.result.get('result') not in (0, None):
            return NAGIOS_UNKNOWN, f"Search failed: {connection.result.get('description')}", []
    except LDAPException as e:
        return NAGIOS_UNKNOWN, f"LDAP error: {e}", []
    finally:
        connection.unbind()

    threshold = Threshold.from_args(args)
    perfdata = [Perfdata('Entries', count, threshold=threshold)]
    return threshold.check(count), f"Found {count} entries in {args.base}", perfdata


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to count LDAP entries matching a filter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H ldap.example.com -b dc=example,dc=com -f '(objectClass=person)' -w 1000: -c 500:
  %(prog)s -H ldap.example.com -s -l cn=nagios,dc=example,dc=com -p secret -b ou=users,dc=example,dc=com -f '(uid=*)' -w 10 -c 20
        """
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The host to connect to"
    )
    parser.add_argument(
        "-o", "--port",
        type=int,
        help="Port used by the LDAP server (default: 389, 636 with --ssl)"
    )
    parser.add_argument(
        "-l", "--login",
        help="DN to bind with (default: anonymous bind)"
    )
    parser.add_argument(
        "-p", "--password",
        help="Password used for authentication"
    )
    parser.add_argument(
        "-b", "--base",
        required=True,
        help="Base DN for the search (e.g. dc=example,dc=com)"
    )
    parser.add_argument(
        "-f", "--filter",
        required=True,
        help="LDAP filter used to search for entries (e.g. (attr=value))"
    )
    parser.add_argument(
        "-s", "--ssl",
        action="store_true",
        help="Use LDAPS"
    )
    add_threshold_arguments(parser)
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_ldap_count, args))


if __name__ == "__main__":
    main()
