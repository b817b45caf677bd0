#!/usr/bin/env python3
"""
Nagios Plugin for TYPO3 Installations
Reads the page of the TYPO3 "nagios" extension and reports response time,
the number of database tables, pending extension updates and extensions
whose TYPO3 dependency excludes the installed TYPO3 version.

Available extension versions come from the TYPO3 extension repository
(mirrors.xml.gz and extensions.xml.gz of a mirror). Both files can be kept
in a cache directory (-C); the cached extension list is refreshed when its
MD5 sum no longer matches the one published by the mirror.

Dependencies:
- requests
- lxml

Copyright (C) 2024 - GPLv3 License
"""

import argparse
import functools
import gzip
import hashlib
import os
import random
import re
import sys
from typing import Dict, List, Optional, Tuple

import requests
from lxml import etree

from nagios_common import (
    NAGIOS_CRITICAL, NAGIOS_UNKNOWN, NAGIOS_WARNING, CheckResult, NagiosArgumentParser,
    Perfdata, PluginExit, Threshold, add_common_arguments, add_threshold_arguments, run_plugin,
)
from nagios_http import add_http_arguments, build_url, create_session, session_from_args, timed_request

SHORTNAME = "TYPO3"
VERSION = "1.0"
REPOSITORY_URL = "http://repositories.typo3.org"
DEFAULT_URI = "/index.php?eID=nagios"

ACTIONS = {
    'ignore': None,
    'warning': NAGIOS_WARNING,
    'critical': NAGIOS_CRITICAL,
}

LINE_PATTERN = re.compile(r'^(\w+):(.*?)((-version)?-(([\d.]+)(-dev|-([\d.]+))?))?$')
DIGITS_PATTERN = re.compile(r'\d*')


@functools.total_ordering
class Version:
    """Dotted version number, compared numerically

    Each part counts with its leading digits, so 1.2a.3 compares as 1.2.3 and
    a part without digits as 0. Suffixes such as -rc1 or -dev are ignored:
    6.2.0-rc1 equals 6.2.0.
    """

    def __init__(self, text: Optional[str]):
        self.text = text or '0'
        parts = [int(DIGITS_PATTERN.match(part).group() or 0) for part in self.text.split('.')]
        while parts and parts[-1] == 0:
            parts.pop()
        self.parts = tuple(parts)

    def __eq__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self.parts == other.parts

    def __lt__(self, other):
        return self.parts < other.parts

    def __hash__(self):
        return hash(self.parts)

    def __bool__(self):
        return bool(self.parts)

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"Version({self.text!r})"


class ExtensionRepository:
    """Available extension versions from the TYPO3 extension repository"""

    def __init__(self, cache: Optional[str] = None, timeout: float = 30, verbose: bool = False):
        self.cache = cache
        self.timeout = timeout
        self.verbose = verbose
        self.session = create_session(user_agent=f"check_typo3/{VERSION}")

    def fetch(self, base: str, filename: str) -> bytes:
        url = f"{base}/{filename}"
        if self.verbose:
            print(f"DEBUG: Fetching {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PluginExit(NAGIOS_UNKNOWN, f"Could not download {url}: {e}")
        if response.status_code != 200:
            raise PluginExit(NAGIOS_UNKNOWN, f"Could not download {url}: {response.status_code}")
        return response.content

    def cache_path(self, filename: str) -> Optional[str]:
        return os.path.join(self.cache, filename) if self.cache else None

    def fetch_cached(self, base: str, filename: str) -> bytes:
        path = self.cache_path(filename)
        if path and os.path.isfile(path):
            with open(path, 'rb') as f:
                return f.read()

        content = self.fetch(base, filename)
        if path and os.path.isdir(self.cache):
            with open(path, 'wb') as f:
                f.write(content)
        return content

    def fetch_xml(self, base: str, filename: str) -> etree._Element:
        try:
            return etree.fromstring(gzip.decompress(self.fetch_cached(base, filename)),
                                    parser=etree.XMLParser(huge_tree=True))
        except (OSError, EOFError, etree.XMLSyntaxError) as e:
            raise PluginExit(NAGIOS_UNKNOWN, f"Invalid {filename}: {e}")

    def mirror_url(self, preferred: Optional[str] = None) -> str:
        mirrors = self.fetch_xml(REPOSITORY_URL, 'mirrors.xml.gz')
        candidates = mirrors.xpath('/mirrors/mirror')
        if not candidates:
            raise PluginExit(NAGIOS_UNKNOWN, 'No TYPO3 repository mirrors available')

        chosen = None
        if preferred:
            matches = mirrors.xpath('/mirrors/mirror[host=$host]', host=preferred)
            chosen = matches[0] if matches else None
        if chosen is None:
            if self.verbose:
                print(f"DEBUG: Selecting random mirror from {len(candidates)} candidates")
            chosen = random.choice(candidates)

        url = f"http://{chosen.findtext('host')}{chosen.findtext('path') or ''}".rstrip('/')
        if self.verbose:
            print(f"DEBUG: Using mirror: {url}")
        return url

    def purge_outdated(self, mirror: str):
        """Remove the cached extension list if the mirror has a different one"""
        path = self.cache_path('extensions.xml.gz')
        if not path or not os.path.isfile(path):
            return

        try:
            remote_md5 = self.fetch(mirror, 'extensions.md5').decode().strip()
        except PluginExit:
            remote_md5 = None
        with open(path, 'rb') as f:
            local_md5 = hashlib.md5(f.read()).hexdigest()

        if self.verbose:
            print(f"DEBUG: Remote extensions.md5: {remote_md5}, local: {local_md5}")
        if remote_md5 != local_md5:
            if self.verbose:
                print("DEBUG: Local extensions.xml.gz is out of date, purging from cache")
            os.remove(path)

    def extension_versions(self, preferred_mirror: Optional[str] = None) -> Dict[str, List[Version]]:
        mirror = self.mirror_url(preferred_mirror)
        self.purge_outdated(mirror)
        extensions = self.fetch_xml(mirror, 'extensions.xml.gz')
        return {
            extension.get('extensionkey'): [Version(v) for v in extension.xpath('version/@version')]
            for extension in extensions.xpath('/extensions/extension')
        }


def parse_status(content: str, ignore: List[str]) -> dict:
    """Parse the KEY:value lines of the nagios extension page"""
    data = {'EXT': {}, 'EXTDEPTYPO3': {}}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        match = LINE_PATTERN.match(line)
        if not match:
            continue

        key, value = match.group(1), match.group(2)
        if value in ignore:
            continue

        if key in ('TYPO3', 'PHP'):
            data[key] = Version(match.group(5))
        elif key == 'EXT':
            data['EXT'][value] = Version(match.group(6))
        elif key == 'EXTDEPTYPO3':
            data['EXTDEPTYPO3'][value] = (Version(match.group(6)), Version(match.group(8)))
        else:
            data[key] = value
    return data


def pending_updates(installed: Dict[str, Version], available: Dict[str, List[Version]],
                    verbose: bool = False) -> List[str]:
    updates = []
    for name, version in sorted(installed.items()):
        if name not in available:
            if verbose:
                print(f"DEBUG: Extension not found in repository: {name}")
            continue
        if any(version < candidate for candidate in available[name]):
            updates.append(name)
    return updates


def version_conflicts(typo3: Version, dependencies: Dict[str, Tuple[Version, Version]]) -> List[str]:
    """Extensions whose TYPO3 version range excludes the installed version"""
    conflicts = []
    for name, (lower, upper) in sorted(dependencies.items()):
        # An upper bound of 0 means no upper bound
        if upper and (typo3 < lower or typo3 > upper):
            conflicts.append(f"{name}[{lower}-{upper}]")
    return conflicts


def evaluate(data: dict, available: Dict[str, List[Version]], elapsed: float, threshold: Threshold,
             args) -> CheckResult:
    updates = pending_updates(data['EXT'], available, args.verbose)
    typo3 = data.get('TYPO3', Version(None))
    conflicts = version_conflicts(typo3, data['EXTDEPTYPO3'])

    perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]
    if 'DBTABLES' in data and data['DBTABLES'].isdigit():
        perfdata.append(Perfdata('Database tables', int(data['DBTABLES'])))
    perfdata.append(Perfdata('Updates pending', len(updates)))
    perfdata.append(Perfdata('Version conflicts', len(conflicts)))

    codes = [threshold.check(elapsed)]
    message = f"Request finished in {elapsed:.0f}ms"

    deprecation_action = ACTIONS[args.deprecationlog_action]
    if deprecation_action is not None and data.get('DEPRECATIONLOG') == 'enabled':
        codes.append(deprecation_action)
        message += "; Deprecation log enabled!"

    if conflicts:
        if ACTIONS[args.conflict_action] is not None:
            codes.append(ACTIONS[args.conflict_action])
        message += f"; TYPO3 {typo3} conflicts: {', '.join(conflicts)}"

    if updates:
        if ACTIONS[args.update_action] is not None:
            codes.append(ACTIONS[args.update_action])
        message += f"; Updates available: {', '.join(updates)}"

    return max(codes), message, perfdata


def check_typo3(args) -> CheckResult:
    """Check a TYPO3 installation and return Nagios result"""
    repository = ExtensionRepository(args.cache, args.timeout, args.verbose)
    available = repository.extension_versions(args.mirror)

    session = session_from_args(args, user_agent=SHORTNAME)
    url = build_url(args.host, args.path, args.ssl, args.port, args.ip)
    threshold = Threshold.from_args(args)

    if args.verbose:
        print(f"DEBUG: Connecting to TYPO3 on {url} with user {args.login or ''}")

    try:
        response, elapsed = timed_request(session, 'GET', url, args.timeout)
    except requests.exceptions.RequestException as e:
        return NAGIOS_CRITICAL, f"Could not connect to TYPO3: {e}", []

    if response.status_code != 200:
        perfdata = [Perfdata('Latency', elapsed, 'ms', threshold)]
        return NAGIOS_CRITICAL, f"TYPO3 returned an HTTP error: {response.status_code}", perfdata

    data = parse_status(response.text, args.ignore)
    return evaluate(data, available, elapsed, threshold, args)


def parse_args(argv=None):
    parser = NagiosArgumentParser(
        description="Nagios plugin to monitor TYPO3 installations running the nagios extension",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Actions (--update-action, --conflict-action, --deprecationlog-action):
  ignore    report in the message only
  warning   raise the status to at least WARNING
  critical  raise the status to CRITICAL

Examples:
  %(prog)s -H www.example.com -w 1000 -c 3000
  %(prog)s -H www.example.com -I 10.0.0.4 -l nagios -p secret -C /var/cache/typo3 -w 1000 -c 3000
  %(prog)s -H www.example.com -i realurl -i tt_news --update-action critical -w 1000 -c 3000
        """
    )
    add_http_arguments(parser, path_required=False, default_path=DEFAULT_URI,
                       service="TYPO3 nagios extension", path_flags=("-u", "--uri"))
    parser.add_argument(
        "-i", "--ignore",
        action="append",
        default=[],
        help="Extension key to ignore. Can be given multiple times"
    )
    parser.add_argument(
        "-C", "--cache",
        help="Directory to cache the extension repository files in"
    )
    parser.add_argument(
        "-M", "--mirror",
        help="Host name of the preferred repository mirror (default: random)"
    )
    for name, what in (("update", "pending extension updates"),
                       ("conflict", "TYPO3 version conflicts"),
                       ("deprecationlog", "an enabled deprecation log")):
        parser.add_argument(
            f"--{name}-action",
            choices=sorted(ACTIONS),
            default="warning",
            help=f"Action on {what} (default: warning)"
        )
    add_threshold_arguments(parser, unit="milliseconds")
    add_common_arguments(parser, VERSION, timeout=60)
    return parser.parse_args(argv)


def main():
    args = parse_args()
    sys.exit(run_plugin(SHORTNAME, check_typo3, args))


if __name__ == "__main__":
    main()
