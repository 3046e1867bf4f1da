"""
Tests for the OpenSSL subprocess adapter.
"""
import os
import subprocess
import tempfile
import unittest
from unittest.mock import patch

from nodecert.security.errors import ToolkitExecutionError, ToolkitUnavailableError
from nodecert.security.toolkit import OpenSslToolkit, parse_version


def _completed(stdout='', returncode=0, stderr=''):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestParseVersion(unittest.TestCase):
    """Test cases for version parsing."""

    def test_parse_version(self):
        self.assertEqual(parse_version('3.0.13'), (3, 0, 13))
        self.assertEqual(parse_version('1.1.1w'), (1, 1, 1))
        self.assertLess(parse_version('3.0.1'), parse_version('3.0.2'))
        self.assertLess(parse_version('3.0.9'), parse_version('3.0.10'))


class TestOpenSslToolkit(unittest.TestCase):
    """Test cases for OpenSslToolkit with subprocess mocked out."""

    def setUp(self):
        self.toolkit = OpenSslToolkit(openssl_path='/usr/bin/openssl')

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_check_version_accepts_minimum_and_newer(self, mock_run):
        """The minimum version itself is accepted."""
        for output, expected in (
            ('OpenSSL 3.0.2 15 Mar 2022 (Library: OpenSSL 3.0.2 15 Mar 2022)\n', '3.0.2'),
            ('OpenSSL 3.2.1 30 Jan 2024 (Library: OpenSSL 3.2.1 30 Jan 2024)\n', '3.2.1'),
        ):
            mock_run.return_value = _completed(output)
            self.assertEqual(self.toolkit.check_version(), expected)

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_check_version_rejects_old_or_unknown(self, mock_run):
        """Older versions and non-OpenSSL output are unavailable."""
        for output in ('OpenSSL 1.1.1w  11 Sep 2023\n', 'LibreSSL 3.3.6\n', ''):
            mock_run.return_value = _completed(output)
            with self.assertRaises(ToolkitUnavailableError):
                self.toolkit.check_version()

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_missing_executable(self, mock_run):
        """A missing executable is reported as unavailable."""
        mock_run.side_effect = FileNotFoundError('openssl')

        with self.assertRaises(ToolkitUnavailableError):
            self.toolkit.check_version()
        with self.assertRaises(ToolkitUnavailableError):
            self.toolkit.derive_public_key('/tmp/key.pem')

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_nonzero_exit_carries_details(self, mock_run):
        """Failed invocations keep the command, exit code and stderr."""
        mock_run.return_value = _completed(returncode=1, stderr='unable to load CA private key\n')

        with self.assertRaises(ToolkitExecutionError) as context:
            self.toolkit.sign_csr('/certs/ca.cnf', '/certs/node.csr.pem', 375, '/certs/node.crt.pem')

        error = context.exception
        self.assertEqual(error.returncode, 1)
        self.assertIn('unable to load CA private key', error.stderr)
        self.assertEqual(error.command[0], '/usr/bin/openssl')
        self.assertIn('unable to load CA private key', str(error))

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_sign_csr_command(self, mock_run):
        """Signing runs in batch mode with explicit paths and no working directory."""
        mock_run.return_value = _completed()

        self.toolkit.sign_csr('/certs/ca.cnf', '/certs/node.csr.pem', 375, '/certs/node.crt.pem')

        args, kwargs = mock_run.call_args
        self.assertEqual(args[0], [
            '/usr/bin/openssl', 'ca', '-config', '/certs/ca.cnf', '-days', '375',
            '-notext', '-batch', '-in', '/certs/node.csr.pem', '-out', '/certs/node.crt.pem',
        ])
        self.assertNotIn('cwd', kwargs)

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_create_ca_certificate_command(self, mock_run):
        mock_run.return_value = _completed()

        self.toolkit.create_ca_certificate('/certs/ca.cnf', '/certs/ca.key.pem', 7300, '/certs/ca.crt.pem')

        command = mock_run.call_args[0][0]
        self.assertEqual(command[1:3], ['req', '-config'])
        self.assertIn('-x509', command)
        self.assertEqual(command[command.index('-days') + 1], '7300')

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_revoke_command(self, mock_run):
        mock_run.return_value = _completed()

        self.toolkit.revoke_certificate('/certs/ca.cnf', '/certs/node.crt.pem')

        self.assertEqual(mock_run.call_args[0][0], [
            '/usr/bin/openssl', 'ca', '-config', '/certs/ca.cnf', '-revoke', '/certs/node.crt.pem',
        ])

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_derive_public_key_writes_file(self, mock_run):
        """The public key PEM is returned and optionally written."""
        pem = '-----BEGIN PUBLIC KEY-----\nMCowBQYDK2VwAyEA\n-----END PUBLIC KEY-----\n'
        mock_run.return_value = _completed(pem)

        with tempfile.TemporaryDirectory() as temp_dir:
            public_path = os.path.join(temp_dir, 'ca.pubkey.pem')
            self.assertEqual(self.toolkit.derive_public_key('/certs/ca.key.pem', public_path), pem)
            with open(public_path, 'r') as f:
                self.assertEqual(f.read(), pem)

        self.assertEqual(mock_run.call_args[0][0][1:], ['pkey', '-in', '/certs/ca.key.pem', '-pubout'])

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_generate_private_key_restricts_permissions(self, mock_run):
        """The generated key file is chmod 0600."""
        with tempfile.TemporaryDirectory() as temp_dir:
            key_path = os.path.join(temp_dir, 'node.key.pem')

            def fake_genpkey(command, **kwargs):
                with open(key_path, 'w') as f:
                    f.write('key')
                return _completed()

            mock_run.side_effect = fake_genpkey
            self.toolkit.generate_private_key(key_path)

            self.assertEqual(os.stat(key_path).st_mode & 0o777, 0o600)
            command = mock_run.call_args[0][0]
            self.assertEqual(command[1:4], ['genpkey', '-algorithm', 'ed25519'])

    @patch('nodecert.security.toolkit.subprocess.run')
    def test_dump_pipes_pkcs7_output(self, mock_run):
        """The PKCS#7 bundle is piped into the text dump."""
        mock_run.side_effect = [_completed('PKCS7 DATA'), _completed('Certificate:\n')]

        output = self.toolkit.dump_certificates('/certs/node.full.crt.pem')

        self.assertEqual(output, 'Certificate:\n')
        first, second = mock_run.call_args_list
        self.assertEqual(first[0][0][1:], ['crl2pkcs7', '-nocrl', '-certfile', '/certs/node.full.crt.pem'])
        self.assertEqual(second[1]['input'], 'PKCS7 DATA')


if __name__ == '__main__':
    unittest.main()
