#!/usr/bin/env python3
"""
Nagios Plugin for IMAP Folders
Logs into an IMAP server and counts the unseen messages in a folder, or
the messages matching an IMAP search filter. Folder names may contain any
Unicode characters, they are sent in IMAP modified UTF-7.

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import binascii
import imaplib
import re
import ssl
import sys
from typing import List

from nagios_common import (
    NAGIOS_UNKNOWN, CheckResult, NagiosArgumentParser, Perfdata, PluginExit, Threshold,
    add_common_arguments, add_threshold_arguments, run_plugin,
)

SHORTNAME = "IMAP"
VERSION = "1.0"

LIST_PATTERN = re.compile(r'^\((?P<flags>[^)]*)\) (?P<delimiter>"[^"]*"|NIL) (?P<name>.+)$')
UNSEEN_PATTERN = re.compile(r'\(.*UNSEEN (\d+).*\)')


def imap_utf7_encode(name: str) -> str:
    """Mailbox name in IMAP modified UTF-7 (RFC 3501, 5.1.3)

    >>> imap_utf7_encode('Größe')
    'Gr&APYA3w-e'
    """
    result = []
    pending = []

    def flush():
        if pending:
            encoded = binascii.b2a_base64(''.join(pending).encode('utf-16be'), newline=False)
            result.append('&' + encoded.rstrip(b'=').replace(b'/', b',').decode('ascii') + '-')
            del pending[:]

    for char in name:
        if 0x20 <= ord(char) <= 0x7e:
            flush()
            result.append('&-' if char == '&' else char)
        else:
            pending.append(char)
    flush()
    return ''.join(result)


def _decode_shifted(chunk: str) -> str:
    data = chunk.replace(',', '/')
    data += '=' * (-len(data) % 4)
    return binascii.a2b_base64(data).decode('utf-16be')


def imap_utf7_decode(name: str) -> str:
    """Mailbox name from IMAP modified UTF-7, malformed names are left as they are

    >>> imap_utf7_decode('Gel&APY-scht')
    'Gelöscht'
    """
    result = []
    shifted = None
    for char in name:
        if shifted is None:
            if char == '&':
                shifted = ''
            else:
                result.append(char)
        elif char == '-':
            try:
                result.append(_decode_shifted(shifted) if shifted else '&')
            except ValueError:
                return name
            shifted = None
        else:
            shifted += char
    if shifted is not None:
        return name
    return ''.join(result)


def _quote(folder: str) -> str:
    encoded = imap_utf7_encode(folder)
    return '"' + encoded.replace('\\', '\\\\').replace('"', '\\"') + '"'


def mailbox_names(imap: imaplib.IMAP4) -> List[str]:
    """Names of all mailboxes from a LIST response"""
    _, data = imap.list()
    names = []
    for line in data:
        if isinstance(line, tuple):
            # Literal form: the name follows as a separate string
            names.append(imap_utf7_decode(line[1].decode()))
            continue
        if not line:
            continue
        match = LIST_PATTERN.match(line.decode())
        if match:
            name = match.group('name')
            if name.startswith('"') and name.endswith('"'):
                name = name[1:-1].replace('\\"', '"').replace('\\\\', '\\')
            names.append(imap_utf7_decode(name))
    return names


def count_unseen(imap: imaplib.IMAP4, folder: str) -> int:
    _, data = imap.status(_quote(folder), '(UNSEEN)')
    match = UNSEEN_PATTERN.search(data[0].decode())
    if not match:
        raise PluginExit(NAGIOS_UNKNOWN, f"Unexpected STATUS response for {folder}")
    return int(match.group(1))


def count_matching(imap: imaplib.IMAP4, folder: str, criteria: str) -> int:
    imap.select(_quote(folder), readonly=True)
    _, data = imap.search(None, criteria)
    return len(data[0].split()) if data and data[0] else 0


def connect(args) -> imaplib.IMAP4:
    context = ssl.create_default_context(cafile=args.ca_file)
    port = args.port or (993 if args.ssl else 143)

    if args.verbose:
        print(f"DEBUG: Connecting to {args.host} on port {port}")
    try:
        if args.ssl:
            imap = imaplib.IMAP4_SSL(args.host, port, ssl_context=context, timeout=args.timeout)
        else:
            imap = imaplib.IMAP4(args.host, port, timeout=args.timeout)
        if args.starttls:
            if args.verbose:
                print("DEBUG: Enabling STARTTLS")
            imap.starttls(ssl_context=context)
    except (OSError, imaplib.IMAP4.error) as e:
        raise PluginExit(NAGIOS_UNKNOWN, f"Connection failed: {e}")
    return imap


def check_imap_folder(args) -> CheckResult:
    """Count messages in an IMAP folder and return Nagios result"""
    imap = connect(args)
    try:
        if args.verbose:
            print(f"DEBUG: Logging in as user {args.login}")
        try:
            imap.login(args.login, args.password)
        except imaplib.IMAP4.error as e:
            return NAGIOS_UNKNOWN, f"Login failed: {e}", []

        mailboxes = mailbox_names(imap)
        if args.debug:
            for mailbox in mailboxes:
                print(f"DEBUG: Found mailbox: {mailbox}")
        if args.folder not in mailboxes:
            return NAGIOS_UNKNOWN, f"Could not select folder: {args.folder}", []

        if args.filter:
            if args.verbose:
                print(f"DEBUG: Counting messages matching '{args.filter}'")
            count = count_matching(imap, args.folder, args.filter)
        else:
            if args.verbose:
                print("DEBUG: Counting unseen messages")
            count = count_unseen(imap, args.folder)
    except imaplib.IMAP4.error as e:
        return NAGIOS_UNKNOWN, f"IMAP error: {e}", []
    finally:
        try:
            imap.logout()
        except (OSError, imaplib.IMAP4.error):
            # Server may already have closed the connection
            pass

    threshold = Threshold.from_args(args)
    perfdata = [Perfdata('Unseen', count, 'messages', threshold)]
    return threshold.check(count), f"{count} messages found in {args.folder}", perfdata


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to count messages in an IMAP folder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -H imap.example.com -l nagios -p secret -w 10 -c 50
  %(prog)s -H imap.example.com -s -l nagios -p secret -f Spam -w 100 -c 500
  %(prog)s -H imap.example.com -S -l nagios -p secret -F 'FROM "cron" UNSEEN' -w 1 -c 5
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
        "-f", "--folder",
        default="INBOX",
        help="Folder to check (default: INBOX)"
    )
    parser.add_argument(
        "-F", "--filter",
        help="IMAP search criteria; without it the unseen messages are counted"
    )
    parser.add_argument(
        "-P", "--port",
        type=int,
        help="Port of the IMAP server (default: 143, 993 with --ssl)"
    )
    parser.add_argument(
        "-C", "--ca-file",
        help="CA certificates used to verify the server certificate"
    )
    tls = parser.add_mutually_exclusive_group()
    tls.add_argument(
        "-s", "--ssl",
        action="store_true",
        help="Use IMAP over SSL"
    )
    tls.add_argument(
        "-S", "--starttls",
        action="store_true",
        help="Use STARTTLS"
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Print the mailboxes found on the server"
    )
    add_threshold_arguments(parser)
    add_common_arguments(parser, VERSION)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_imap_folder, args))


if __name__ == "__main__":
    main()
