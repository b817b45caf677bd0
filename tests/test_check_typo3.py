"""TYPO3 check tests"""

import argparse
import gzip
import hashlib
from unittest.mock import MagicMock, patch

import pytest

from check_typo3 import (
    ExtensionRepository, Version, check_typo3, evaluate, parse_args, parse_status, pending_updates,
    version_conflicts,
)
from nagios_common import NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, NAGIOS_WARNING, PluginExit, Threshold

STATUS_PAGE = """# TYPO3 nagios extension
TYPO3:version-4.5.10
PHP:version-5.3.3
EXT:realurl-version-1.12.8
EXT:tt_news-version-3.0.1
EXT:news-version-1.3.0
EXTDEPTYPO3:realurl-4.5.0-6.2.99
EXTDEPTYPO3:tt_news-4.0.0-4.5.0
EXTDEPTYPO3:old_ext-3.5.0-4.4.99
EXTDEPTYPO3:news-4.5.0-0.0.0
DBTABLES:84
DEPRECATIONLOG:enabled
"""

MIRRORS = gzip.compress(b"""<?xml version="1.0"?>
<mirrors>
  <mirror><title>Main</title><host>mirror.example.org</host><path>/typo3/</path></mirror>
  <mirror><title>Other</title><host>other.example.org</host><path>/ter</path></mirror>
</mirrors>""")
EXTENSIONS = gzip.compress(b"""<?xml version="1.0"?>
<extensions>
  <extension extensionkey="realurl"><version version="1.12.8"/><version version="1.12.9"/></extension>
  <extension extensionkey="tt_news"><version version="3.0.1"/></extension>
</extensions>""")

AVAILABLE = {
    'realurl': [Version('1.12.8'), Version('1.12.9')],
    'tt_news': [Version('3.0.1')],
}


def make_args(**overrides):
    values = dict(verbose=False, update_action='warning', conflict_action='warning',
                  deprecationlog_action='warning')
    values.update(overrides)
    return argparse.Namespace(**values)


class TestVersion:

    def test_numeric_order(self):
        assert Version('4.5.10') > Version('4.5.9')
        assert Version('1.12') > Version('1.2.99')

    def test_trailing_zeros(self):
        assert Version('4.5') == Version('4.5.0')
        assert str(Version('4.5.0')) == '4.5.0'

    def test_zero_is_false(self):
        assert not Version('0.0.0')
        assert not Version(None)
        assert Version('0.1')

    def test_leading_digits_of_each_part(self):
        """Letters after the digits of a part do not drop the part"""
        assert Version('1.2a.3') == Version('1.2.3')
        assert Version('1.2a.3') > Version('1.2.2')
        assert Version('6.2.0-rc1') == Version('6.2')
        assert Version('4.x') == Version('4.0')


class TestParseStatus:

    def test_values(self):
        data = parse_status(STATUS_PAGE, [])
        assert data['TYPO3'] == Version('4.5.10')
        assert data['PHP'] == Version('5.3.3')
        assert data['EXT']['realurl'] == Version('1.12.8')
        assert data['EXTDEPTYPO3']['tt_news'] == (Version('4.0.0'), Version('4.5.0'))
        assert data['DBTABLES'] == '84'
        assert data['DEPRECATIONLOG'] == 'enabled'

    def test_ignore_exact_names(self):
        """Ignoring news keeps tt_news"""
        data = parse_status(STATUS_PAGE, ['news'])
        assert 'news' not in data['EXT']
        assert 'news' not in data['EXTDEPTYPO3']
        assert 'tt_news' in data['EXT']


class TestComparisons:

    def test_pending_updates(self):
        data = parse_status(STATUS_PAGE, [])
        assert pending_updates(data['EXT'], AVAILABLE) == ['realurl']

    def test_conflicts(self):
        data = parse_status(STATUS_PAGE, [])
        assert version_conflicts(data['TYPO3'], data['EXTDEPTYPO3']) == [
            'old_ext[3.5.0-4.4.99]',
            'tt_news[4.0.0-4.5.0]',
        ]

    def test_no_upper_bound(self):
        dependencies = {'news': (Version('4.5.0'), Version('0.0.0'))}
        assert version_conflicts(Version('3.0'), dependencies) == []


class TestEvaluate:

    def test_all_findings(self):
        data = parse_status(STATUS_PAGE, [])
        code, message, perfdata = evaluate(data, AVAILABLE, 120.0, Threshold('1000', '3000'),
                                           make_args(conflict_action='critical'))
        assert code == NAGIOS_CRITICAL
        assert message == ("Request finished in 120ms; Deprecation log enabled!; "
                           "TYPO3 4.5.10 conflicts: old_ext[3.5.0-4.4.99], tt_news[4.0.0-4.5.0]; "
                           "Updates available: realurl")
        assert [str(p) for p in perfdata] == [
            'Latency=120ms;1000;3000',
            "'Database tables'=84",
            "'Updates pending'=1",
            "'Version conflicts'=2",
        ]

    def test_ignore_actions(self):
        """Ignored findings stay in the message but do not change the status"""
        data = parse_status(STATUS_PAGE, [])
        code, message, _ = evaluate(data, AVAILABLE, 120.0, Threshold('1000', '3000'),
                                    make_args(update_action='ignore', conflict_action='ignore',
                                              deprecationlog_action='ignore'))
        assert code == NAGIOS_OK
        assert 'Updates available: realurl' in message
        assert 'Deprecation log' not in message

    def test_warning_actions(self):
        data = parse_status(STATUS_PAGE, [])
        code, _, _ = evaluate(data, AVAILABLE, 120.0, Threshold('1000', '3000'), make_args())
        assert code == NAGIOS_WARNING

    def test_slow(self):
        code, _, _ = evaluate(parse_status('TYPO3:version-6.2.0', []), {}, 5000.0,
                              Threshold('1000', '3000'), make_args())
        assert code == NAGIOS_CRITICAL


class FakeRepository:
    """Serves repository files by URL"""

    def __init__(self, make_response, files):
        self.make_response = make_response
        self.files = files
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        if url not in self.files:
            return self.make_response(404, url=url)
        return self.make_response(content=self.files[url], url=url)


class TestExtensionRepository:

    def make_repository(self, make_response, cache=None, files=None):
        repository = ExtensionRepository(cache=cache)
        server = FakeRepository(make_response, files if files is not None else {
            'http://repositories.typo3.org/mirrors.xml.gz': MIRRORS,
            'http://other.example.org/ter/extensions.xml.gz': EXTENSIONS,
            'http://other.example.org/ter/extensions.md5': hashlib.md5(EXTENSIONS).hexdigest().encode(),
        })
        repository.session = MagicMock()
        repository.session.get.side_effect = server.get
        return repository, server

    def test_preferred_mirror(self, make_response):
        repository, _ = self.make_repository(make_response)
        assert repository.mirror_url('other.example.org') == 'http://other.example.org/ter'

    def test_random_mirror(self, make_response):
        repository, _ = self.make_repository(make_response)
        with patch('check_typo3.random.choice', side_effect=lambda candidates: candidates[0]):
            assert repository.mirror_url('unknown.example.org') == 'http://mirror.example.org/typo3'

    def test_extension_versions_cached(self, make_response, tmp_path):
        repository, server = self.make_repository(make_response, cache=str(tmp_path))
        versions = repository.extension_versions('other.example.org')
        assert versions['realurl'] == [Version('1.12.8'), Version('1.12.9')]
        assert (tmp_path / 'mirrors.xml.gz').read_bytes() == MIRRORS
        assert (tmp_path / 'extensions.xml.gz').read_bytes() == EXTENSIONS

        server.requested.clear()
        repository.extension_versions('other.example.org')
        assert server.requested == ['http://other.example.org/ter/extensions.md5']

    def test_outdated_cache_purged(self, make_response, tmp_path):
        (tmp_path / 'mirrors.xml.gz').write_bytes(MIRRORS)
        (tmp_path / 'extensions.xml.gz').write_bytes(gzip.compress(b'<extensions/>'))
        repository, server = self.make_repository(make_response, cache=str(tmp_path))

        versions = repository.extension_versions('other.example.org')
        assert 'tt_news' in versions
        assert 'http://other.example.org/ter/extensions.xml.gz' in server.requested
        assert (tmp_path / 'extensions.xml.gz').read_bytes() == EXTENSIONS

    def test_download_failed(self, make_response):
        repository, _ = self.make_repository(make_response, files={})
        with pytest.raises(PluginExit) as excinfo:
            repository.extension_versions()
        assert excinfo.value.code == NAGIOS_UNKNOWN
        assert excinfo.value.message.endswith('mirrors.xml.gz: 404')

    def test_invalid_archive(self, make_response):
        repository, _ = self.make_repository(make_response, files={
            'http://repositories.typo3.org/mirrors.xml.gz': b'not gzipped',
        })
        with pytest.raises(PluginExit) as excinfo:
            repository.mirror_url()
        assert excinfo.value.message.startswith('Invalid mirrors.xml.gz')


class TestCheck:

    def test_http_error(self, http_args, make_response):
        args = http_args(path='/index.php?eID=nagios', cache=None, mirror=None, ignore=[],
                         warning='1000', critical='3000')
        with patch('check_typo3.ExtensionRepository') as repository, \
                patch('check_typo3.timed_request', return_value=(make_response(503), 30.0)) as request:
            repository.return_value.extension_versions.return_value = AVAILABLE
            code, message, perfdata = check_typo3(args)
        assert code == NAGIOS_CRITICAL
        assert message == 'TYPO3 returned an HTTP error: 503'
        assert len(perfdata) == 1
        assert request.call_args[0][2] == 'http://www.example.com/index.php?eID=nagios'

    def test_status_page(self, http_args, make_response):
        args = http_args(path='/index.php?eID=nagios', cache=None, mirror=None, ignore=['old_ext', 'tt_news'],
                         warning='1000', critical='3000', update_action='ignore', conflict_action='critical',
                         deprecationlog_action='ignore')
        with patch('check_typo3.ExtensionRepository') as repository, \
                patch('check_typo3.timed_request', return_value=(make_response(content=STATUS_PAGE), 80.0)):
            repository.return_value.extension_versions.return_value = AVAILABLE
            code, message, _ = check_typo3(args)
        assert code == NAGIOS_OK
        assert message == 'Request finished in 80ms; Updates available: realurl'


class TestArguments:

    def test_defaults(self):
        args = parse_args(['-H', 'www.example.com', '-w', '1000', '-c', '3000'])
        assert args.path == '/index.php?eID=nagios'
        assert args.timeout == 60
        assert args.update_action == 'warning'
        assert args.ignore == []

    def test_invalid_action(self):
        with pytest.raises(SystemExit):
            parse_args(['-H', 'h', '--update-action', 'panic', '-w', '1', '-c', '2'])
