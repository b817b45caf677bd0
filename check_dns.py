#!/usr/bin/env python3
"""
Nagios Plugin for DNS Servers
Sends a single query to a DNS server, checks the response time and
optionally looks for expected records in the answer section.

Records are written as record[:type[:class]], e.g.
  www.example.com            A record in class IN
  example.com:MX             MX record in class IN
  mail.example.com:MX        expected exchange of an MX answer
  2001:db8::1:AAAA           IPv6 address of an AAAA answer

Dependencies:
- dnspython

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import socket
import sys
import time
from dataclasses import dataclass
from typing import List

import dns.exception
import dns.inet
import dns.message
import dns.query
import dns.rdataclass
import dns.rdatatype

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata,
    PluginExit, ResultSet, Threshold, add_common_arguments, add_threshold_arguments,
    milliseconds_since, run_plugin,
)

SHORTNAME = "DNS"
VERSION = "1.0"

NAME_TYPES = ('CNAME', 'NS', 'PTR', 'MX')
ADDRESS_FAMILIES = {'A': socket.AF_INET, 'AAAA': socket.AF_INET6}


def _rdtype_name(text: str):
    try:
        return dns.rdatatype.to_text(dns.rdatatype.from_text(text))
    except (dns.exception.DNSException, ValueError):
        return None


def _rdclass_name(text: str):
    try:
        return dns.rdataclass.to_text(dns.rdataclass.from_text(text))
    except (dns.exception.DNSException, ValueError):
        return None


def _address_family(text: str):
    try:
        return dns.inet.af_for_address(text)
    except ValueError:
        return None


def split_record(text: str):
    """Take known :TYPE and :TYPE:CLASS suffixes off the right end"""
    head, sep, tail = text.rpartition(':')
    if not sep or head.endswith(':'):
        return text, None, None
    rdclass = _rdclass_name(tail)
    if rdclass:
        inner, sep, type_text = head.rpartition(':')
        rdtype = _rdtype_name(type_text)
        if sep and rdtype and not inner.endswith(':'):
            return inner, rdtype, rdclass
    rdtype = _rdtype_name(tail)
    if rdtype:
        return head, rdtype, None
    return text, None, None


@dataclass
class Record:
    """Expected or queried record, written as record[:type[:class]]

    Only known type and class names are split off, so IPv6 addresses work as
    records. When the whole text is an address and the split-off A or AAAA
    does not fit the rest, the text is kept as one address: write
    2001:db8::1:a:AAAA for an address ending in a group that is a type name.
    """
    record: str
    type: str = 'A'
    rdclass: str = 'IN'

    @classmethod
    def parse(cls, text: str, default_type: str = 'A', default_class: str = 'IN') -> "Record":
        record, rdtype, rdclass = split_record(text)
        if rdtype in ADDRESS_FAMILIES and _address_family(text) \
                and _address_family(record) != ADDRESS_FAMILIES[rdtype]:
            record, rdtype, rdclass = text, None, None
        if not record:
            raise ValueError(f"Invalid record: '{text}'")
        return cls(record, rdtype or default_type.upper(), rdclass or default_class.upper())

    def __str__(self) -> str:
        return f"{self.record}:{self.type}:{self.rdclass}"


def parse_record(text: str) -> Record:
    """argparse type for record[:type[:class]]"""
    try:
        return Record.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def rdata_value(rdata) -> str:
    """Comparable text of a single answer record"""
    rdtype = dns.rdatatype.to_text(rdata.rdtype)
    if rdtype in ('A', 'AAAA'):
        return rdata.address
    if rdtype in ('CNAME', 'NS', 'PTR'):
        return rdata.target.to_text()
    if rdtype == 'MX':
        return rdata.exchange.to_text()
    if rdtype == 'TXT':
        return ''.join(part.decode() for part in rdata.strings)
    return rdata.to_text()


def _normalize(value: str, rdtype: str) -> str:
    value = value.rstrip('.')
    return value.lower() if rdtype in NAME_TYPES else value


def answer_matches(response: dns.message.Message, expected: Record) -> bool:
    wanted = _normalize(expected.record, expected.type)
    for rrset in response.answer:
        if dns.rdatatype.to_text(rrset.rdtype) != expected.type:
            continue
        if dns.rdataclass.to_text(rrset.rdclass) != expected.rdclass:
            continue
        if any(_normalize(rdata_value(rdata), expected.type) == wanted for rdata in rrset):
            return True
    return False


def resolve_server(host: str) -> str:
    try:
        return socket.getaddrinfo(host, None, proto=socket.IPPROTO_UDP)[0][4][0]
    except socket.gaierror as e:
        raise PluginExit(NAGIOS_UNKNOWN, f"Could not resolve DNS server {host}: {e}")


def evaluate(response: dns.message.Message, elapsed: float, expected: List[Record],
             threshold: Threshold) -> CheckResult:
    results = ResultSet()
    code = threshold.check(elapsed)
    if code != NAGIOS_OK:
        results.add(code, f"Check took too long: {elapsed:.0f}ms")
    else:
        results.add(code, f"Check finished in: {elapsed:.0f}ms")

    for variant in expected:
        if answer_matches(response, variant):
            results.add(NAGIOS_OK, f"Expected answer found: {variant}")
        else:
            results.add(NAGIOS_CRITICAL, f"Could not find expected answer: {variant}")

    perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]
    return results.code, results.message('; '), perfdata


def check_dns(args) -> CheckResult:
    """Query a DNS server and return Nagios result"""
    query = args.query
    try:
        # Expected records inherit type and class of the query
        expected = [Record.parse(text, query.type, query.rdclass) for text in args.expected]
    except ValueError as e:
        return NAGIOS_UNKNOWN, str(e), []
    server = resolve_server(args.host)

    try:
        request = dns.message.make_query(query.record, query.type, query.rdclass)
    except (dns.exception.DNSException, ValueError) as e:
        return NAGIOS_UNKNOWN, f"Invalid query {query}: {e}", []

    if args.verbose:
        print(f"DEBUG: Sending DNS query to {server}:{args.port}:\n{request.to_text()}")

    start = time.perf_counter()
    try:
        response, used_tcp = dns.query.udp_with_fallback(request, server, timeout=args.timeout,
                                                        port=args.port)
    except dns.exception.Timeout:
        return NAGIOS_CRITICAL, f"DNS query for {query} timed out", []
    except (dns.exception.DNSException, OSError) as e:
        return NAGIOS_CRITICAL, f"DNS query for {query} failed: {e}", []
    elapsed = milliseconds_since(start)

    if args.verbose:
        print(f"DEBUG: Received DNS response{' over TCP' if used_tcp else ''}:\n{response.to_text()}")

    return evaluate(response, elapsed, expected, Threshold.from_args(args))


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to query a DNS server and check its answer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H ns1.example.com -q www.example.com -w 100 -c 500
  %(prog)s -H 10.0.0.53 -q www.example.com -e 192.0.2.10 -e 192.0.2.11 -w 100 -c 500
  %(prog)s -H ns1.example.com -q example.com:MX -e mail.example.com -w 100 -c 500
  %(prog)s -H ns1.example.com -q www.example.com -e www.example.net:CNAME -w 100 -c 500
        """
    )
    parser.add_argument(
        "-H", "--host",
        required=True,
        help="The DNS server to query"
    )
    parser.add_argument(
        "-q", "--query",
        required=True,
        type=parse_record,
        help="Query as record[:type[:class]] (default type: A, class: IN)"
    )
    parser.add_argument(
        "-e", "--expected",
        action="append",
        default=[],
        help="Expected answer as record[:type[:class]]; type and class default to those "
             "of the query. Can be given multiple times"
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=53,
        help="Port of the DNS server (default: 53)"
    )
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_dns, args))


if __name__ == "__main__":
    main()
