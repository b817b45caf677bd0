"""IMAP folder check tests"""

import argparse
import imaplib
from unittest.mock import MagicMock, patch

import pytest

from check_imap_folder import (
    check_imap_folder, connect, count_matching, count_unseen, imap_utf7_decode, imap_utf7_encode, mailbox_names,
    parse_args,
)
from nagios_common import NAGIOS_CRITICAL, NAGIOS_OK, NAGIOS_UNKNOWN, NAGIOS_WARNING, PluginExit

LIST_RESPONSE = [
    b'(\\HasNoChildren) "/" "INBOX"',
    b'(\\HasNoChildren \\Junk) "/" Spam',
    b'(\\HasNoChildren) "/" "Project \\"X\\""',
    (b'(\\HasNoChildren) "/" {8}', b'Archiv 1'),
]


def make_args(**overrides):
    values = dict(host='imap.example.com', login='nagios', password='secret', folder='INBOX', filter=None,
                  port=None, ca_file=None, ssl=False, starttls=False, debug=False, timeout=15, verbose=False,
                  warning='10', critical='50')
    values.update(overrides)
    return argparse.Namespace(**values)


def make_imap(unseen=3, search=b''):
    imap = MagicMock()
    imap.list.return_value = ('OK', LIST_RESPONSE)
    imap.status.return_value = ('OK', [f'"INBOX" (UNSEEN {unseen})'.encode()])
    imap.search.return_value = ('OK', [search])
    return imap


class TestMailboxes:

    def test_names(self):
        """Quoted, atom and literal mailbox names are all recognized"""
        assert mailbox_names(make_imap()) == ['INBOX', 'Spam', 'Project "X"', 'Archiv 1']

    def test_unseen(self):
        imap = make_imap(unseen=7)
        assert count_unseen(imap, 'INBOX') == 7
        imap.status.assert_called_once_with('"INBOX"', '(UNSEEN)')

    def test_unexpected_status(self):
        imap = make_imap()
        imap.status.return_value = ('OK', [b'"INBOX" (MESSAGES 4)'])
        with pytest.raises(PluginExit) as excinfo:
            count_unseen(imap, 'INBOX')
        assert excinfo.value.code == NAGIOS_UNKNOWN

    def test_matching(self):
        imap = make_imap(search=b'1 4 9')
        assert count_matching(imap, 'Spam', 'FROM "cron"') == 3
        imap.select.assert_called_once_with('"Spam"', readonly=True)

    def test_matching_nothing(self):
        assert count_matching(make_imap(search=b''), 'Spam', 'ALL') == 0


class TestModifiedUtf7:
    """Mailbox names outside printable ASCII"""

    @pytest.mark.parametrize('name, encoded', [
        ('INBOX', 'INBOX'),
        ('Größe', 'Gr&APYA3w-e'),
        ('Gelöscht', 'Gel&APY-scht'),
        ('Tom & Jerry', 'Tom &- Jerry'),
        ('日本語', '&ZeVnLIqe-'),
    ])
    def test_encode_decode(self, name, encoded):
        assert imap_utf7_encode(name) == encoded
        assert imap_utf7_decode(encoded) == name

    @pytest.mark.parametrize('name', ['Tom&Jerry', 'a&b'])
    def test_malformed_kept(self, name):
        assert imap_utf7_decode(name) == name

    def test_non_ascii_folder(self):
        """Folders are matched decoded and sent encoded"""
        imap = make_imap(unseen=2)
        imap.list.return_value = ('OK', [b'(\\HasNoChildren \\Trash) "/" Gel&APY-scht'])
        with patch('check_imap_folder.connect', return_value=imap):
            code, message, _ = check_imap_folder(make_args(folder='Gelöscht'))
        assert code == NAGIOS_OK
        assert message == '2 messages found in Gelöscht'
        imap.status.assert_called_once_with('"Gel&APY-scht"', '(UNSEEN)')

    def test_non_ascii_search(self):
        imap = make_imap(search=b'5')
        assert count_matching(imap, 'Entwürfe', 'ALL') == 1
        imap.select.assert_called_once_with('"Entw&APw-rfe"', readonly=True)


class TestCheck:

    def run(self, imap, **overrides):
        with patch('check_imap_folder.connect', return_value=imap):
            return check_imap_folder(make_args(**overrides))

    def test_unseen_ok(self):
        imap = make_imap(unseen=3)
        code, message, perfdata = self.run(imap)
        assert code == NAGIOS_OK
        assert message == '3 messages found in INBOX'
        assert str(perfdata[0]) == 'Unseen=3messages;10;50'
        imap.login.assert_called_once_with('nagios', 'secret')
        imap.logout.assert_called_once_with()

    def test_unseen_thresholds(self):
        assert self.run(make_imap(unseen=20))[0] == NAGIOS_WARNING
        assert self.run(make_imap(unseen=51))[0] == NAGIOS_CRITICAL

    def test_filter(self):
        imap = make_imap(search=b'1 2')
        code, message, _ = self.run(imap, folder='Spam', filter='UNSEEN')
        assert code == NAGIOS_OK
        assert message == '2 messages found in Spam'
        imap.status.assert_not_called()

    def test_login_failed(self):
        imap = make_imap()
        imap.login.side_effect = imaplib.IMAP4.error('AUTHENTICATIONFAILED')
        code, message, _ = self.run(imap)
        assert code == NAGIOS_UNKNOWN
        assert message.startswith('Login failed')
        imap.logout.assert_called_once_with()

    def test_missing_folder(self):
        code, message, _ = self.run(make_imap(), folder='Trash')
        assert code == NAGIOS_UNKNOWN
        assert message == 'Could not select folder: Trash'

    def test_logout_error_ignored(self):
        imap = make_imap()
        imap.logout.side_effect = OSError('connection reset')
        assert self.run(imap)[0] == NAGIOS_OK


class TestConnect:

    def test_ssl_default_port(self):
        with patch('check_imap_folder.imaplib.IMAP4_SSL') as imap_ssl:
            connect(make_args(ssl=True))
        assert imap_ssl.call_args[0] == ('imap.example.com', 993)

    def test_starttls(self):
        imap_class = MagicMock()
        imap_class.error = imaplib.IMAP4.error
        with patch('check_imap_folder.imaplib.IMAP4', imap_class):
            imap = connect(make_args(starttls=True, port=1143))
        assert imap_class.call_args[0] == ('imap.example.com', 1143)
        imap.starttls.assert_called_once()

    def test_connection_refused(self):
        imap_class = MagicMock(side_effect=ConnectionRefusedError('refused'))
        imap_class.error = imaplib.IMAP4.error
        with patch('check_imap_folder.imaplib.IMAP4', imap_class):
            with pytest.raises(PluginExit) as excinfo:
                connect(make_args())
        assert excinfo.value.message == 'Connection failed: refused'


class TestArguments:

    def test_ssl_and_starttls_exclusive(self):
        with pytest.raises(SystemExit) as excinfo:
            parse_args(['-H', 'h', '-l', 'u', '-p', 'p', '-s', '-S', '-w', '1', '-c', '2'])
        assert excinfo.value.code == NAGIOS_UNKNOWN

    def test_defaults(self):
        args = parse_args(['-H', 'h', '-l', 'u', '-p', 'p', '-w', '1', '-c', '2'])
        assert args.folder == 'INBOX'
        assert args.filter is None
