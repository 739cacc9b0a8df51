#!/usr/bin/env python3

import hashlib
import logging
import os
import stat
import textwrap
import unittest
from pathlib import Path
from unittest import mock

import fdroidhost.common
from fdroidhost.exception import ConfigurationException, FDroidHostException

from .shared_test_code import VerboseFalseOptions, mkdtemp


class CommonTest(unittest.TestCase):
    '''fdroidhost/common.py'''

    def setUp(self):
        self._td = mkdtemp()
        self.testdir = self._td.name
        fdroidhost.common.config = None
        fdroidhost.common.options = VerboseFalseOptions()
        fdroidhost.common.options.fdroid_dir = self.testdir

    def tearDown(self):
        fdroidhost.common.config = None
        fdroidhost.common.options = None
        self._td.cleanup()

    def write_config(self, text):
        config_file = Path(self.testdir) / fdroidhost.common.CONFIG_FILE
        config_file.write_text(textwrap.dedent(text))
        config_file.chmod(0o600)

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_defaults(self):
        config = fdroidhost.common.read_config()
        self.assertEqual(config['repo_url'], 'https://f-droid.example.org/fdroid/repo')
        self.assertEqual(config['repo_keyalias'], 'fdroid')
        self.assertEqual(config['fdroiddir'], self.testdir)
        self.assertEqual(config['repodir'], os.path.join(self.testdir, 'repo'))
        self.assertEqual(config['metadatadir'], os.path.join(self.testdir, 'metadata'))
        self.assertEqual(config['keystore'],
                         os.path.join(self.testdir, 'keystore', 'fdroid.keystore'))
        self.assertEqual(config['envfile'], os.path.join(self.testdir, 'keystore', '.env'))
        self.assertEqual(config['serve_port'], 8080)
        self.assertEqual(config['mirrors'], [])
        self.assertEqual(config['apps'], {})
        self.assertIs(config, fdroidhost.common.get_config())

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_fdroid_dir_from_env(self):
        fdroidhost.common.options = None
        os.environ['FDROID_DIR'] = self.testdir
        config = fdroidhost.common.read_config()
        self.assertEqual(config['fdroiddir'], self.testdir)

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_file(self):
        self.write_config(
            """\
            repo_url: https://repo.example.com/fdroid/repo
            repo_name: Test Repo
            keystore: /tmp/nowhere/test.keystore
            mirrors: /var/www/fdroid
            apps:
              org.example.app:
                License: MIT
            """
        )
        config = fdroidhost.common.read_config()
        self.assertEqual(config['repo_url'], 'https://repo.example.com/fdroid/repo')
        self.assertEqual(config['repo_name'], 'Test Repo')
        self.assertEqual(config['keystore'], '/tmp/nowhere/test.keystore')
        self.assertEqual(config['envfile'], '/tmp/nowhere/.env')
        self.assertEqual(
            config['mirrors'],
            [{'type': 'webroot', 'url': '/var/www/fdroid', 'name': 'webroot:/var/www/fdroid'}],
        )
        self.assertEqual(config['apps'], {'org.example.app': {'License': 'MIT'}})

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_environment_overrides(self):
        self.write_config('repo_url: https://file.example.com/fdroid/repo\n')
        os.environ['FDROID_REPO_URL'] = 'https://env.example.com/fdroid/repo'
        os.environ['FDROID_KEYSTORE_PASS'] = 'storepass'
        os.environ['FDROID_KEY_PASS'] = 'keypass'
        os.environ['PORT'] = '9999'
        os.environ['GCS_BUCKET'] = 'gs://my-bucket/'
        config = fdroidhost.common.read_config()
        self.assertEqual(config['repo_url'], 'https://env.example.com/fdroid/repo')
        self.assertEqual(config['keystorepass'], 'storepass')
        self.assertEqual(config['keypass'], 'keypass')
        self.assertEqual(config['serve_port'], 9999)
        self.assertEqual(
            config['mirrors'],
            [{'type': 'gcs', 'bucket': 'my-bucket', 'name': 'gcs:my-bucket'}],
        )

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_bad_port(self):
        os.environ['PORT'] = 'eighty'
        with self.assertRaises(ConfigurationException):
            fdroidhost.common.read_config()

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_env_value(self):
        self.write_config(
            """\
            keystorepass:
              env: SECRET_FOR_TEST
            keypass:
              env: UNSET_FOR_TEST
            """
        )
        os.environ['SECRET_FOR_TEST'] = 'shhh'
        with self.assertLogs(level=logging.ERROR):
            config = fdroidhost.common.read_config()
        self.assertEqual(config['keystorepass'], 'shhh')
        self.assertNotIn('keypass', config)

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_repo_url_must_end_with_repo(self):
        self.write_config('repo_url: https://repo.example.com/fdroid\n')
        with self.assertRaises(ConfigurationException):
            fdroidhost.common.read_config()

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_not_a_dict(self):
        self.write_config('- one\n- two\n')
        with self.assertRaises(ConfigurationException):
            fdroidhost.common.read_config()

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_empty_file(self):
        self.write_config('')
        config = fdroidhost.common.read_config()
        self.assertEqual(config['repo_keyalias'], 'fdroid')

    @mock.patch.dict(os.environ, clear=True)
    def test_read_config_unsafe_permissions(self):
        self.write_config('keystorepass: foo\n')
        os.chmod(os.path.join(self.testdir, fdroidhost.common.CONFIG_FILE), 0o644)
        with self.assertLogs(level=logging.WARNING) as cm:
            fdroidhost.common.read_config()
        self.assertIn('unsafe permissions', '\n'.join(cm.output))

    def test_parse_mirrors_config_str(self):
        self.assertEqual(
            fdroidhost.common.parse_mirrors_config('host:/var/www/fdroid'),
            [{'type': 'webroot', 'url': 'host:/var/www/fdroid',
              'name': 'webroot:host:/var/www/fdroid'}],
        )

    def test_parse_mirrors_config_list(self):
        mirrors = fdroidhost.common.parse_mirrors_config(
            [
                'gs://bucket-a',
                {'type': 'local', 'url': '/mnt/usb/fdroid'},
                {'type': 'gcs', 'bucket': 'bucket-b', 'name': 'cdn'},
            ]
        )
        self.assertEqual(
            mirrors,
            [
                {'type': 'gcs', 'bucket': 'bucket-a', 'name': 'gcs:bucket-a'},
                {'type': 'local', 'url': '/mnt/usb/fdroid', 'name': 'local:/mnt/usb/fdroid'},
                {'type': 'gcs', 'bucket': 'bucket-b', 'name': 'cdn'},
            ],
        )

    def test_parse_mirrors_config_bad(self):
        for bad in (9, {'url': 'foo'}, [{'type': 'ftp', 'url': 'foo'}], [{'type': 'gcs'}], [None]):
            with self.assertRaises(ConfigurationException):
                fdroidhost.common.parse_mirrors_config(bad)

    def test_is_valid_package_name(self):
        for name in ('org.fdroid.fdroid', 'a', 'io.subfrost.subtun', 'de.foo_bar.app2'):
            self.assertTrue(fdroidhost.common.is_valid_package_name(name), name)
        for name in ('', '0rg.example', 'org..example', 'org.example/../x', '../keystore'):
            self.assertFalse(fdroidhost.common.is_valid_package_name(name), name)

    def test_is_index_file(self):
        self.assertTrue(fdroidhost.common.is_index_file('index-v1.jar'))
        self.assertTrue(fdroidhost.common.is_index_file('entry.jar'))
        self.assertFalse(fdroidhost.common.is_index_file('icons/index-v1.jar'))
        self.assertFalse(fdroidhost.common.is_index_file('org.example.app_1.apk'))

    def test_HostPopen(self):
        p = fdroidhost.common.HostPopen(['sh', '-c', 'echo out; echo err >&2; exit 3'])
        self.assertEqual(p.returncode, 3)
        self.assertFalse(p.timed_out)
        self.assertIn('out', p.output)
        self.assertIn('err', p.output)

    def test_HostPopen_envs_and_cwd(self):
        p = fdroidhost.common.HostPopen(['sh', '-c', 'echo "$FOR_TEST"; pwd'],
                                        cwd=self.testdir, envs={'FOR_TEST': 'from env'})
        self.assertEqual(p.returncode, 0)
        self.assertIn('from env', p.output)
        self.assertIn(os.path.basename(self.testdir), p.output)

    def test_HostPopenBytes_stderr_separate(self):
        p = fdroidhost.common.HostPopenBytes(['sh', '-c', 'echo out; echo err >&2'],
                                             stderr_to_stdout=False)
        self.assertEqual(p.output, b'out\n')

    def test_HostPopen_timeout(self):
        with self.assertLogs(level=logging.ERROR):
            p = fdroidhost.common.HostPopen(['sleep', '10'], timeout=0.2)
        self.assertTrue(p.timed_out)
        self.assertIsNone(p.returncode)

    def test_HostPopen_missing_command(self):
        with self.assertRaises(FDroidHostException):
            fdroidhost.common.HostPopen(['/nonexistent/command-for-test'])

    def test_genpassword(self):
        one = fdroidhost.common.genpassword()
        two = fdroidhost.common.genpassword()
        self.assertEqual(44, len(one))
        self.assertNotEqual(one, two)

    def test_get_cert_fingerprint(self):
        self.assertEqual(
            fdroidhost.common.get_cert_fingerprint(b'certificate'),
            hashlib.sha256(b'certificate').hexdigest().upper(),
        )

    def test_format_fingerprint(self):
        self.assertEqual(fdroidhost.common.format_fingerprint('ab01CD'), 'AB 01 CD')
        self.assertEqual(fdroidhost.common.format_fingerprint('AB:01:CD'), 'AB 01 CD')

    def test_write_secret_file(self):
        path = os.path.join(self.testdir, 'sub', 'secret')
        fdroidhost.common.write_secret_file(path, 'PASS=1\n')
        fdroidhost.common.write_secret_file(path, 'PASS=2\n')
        with open(path) as fp:
            self.assertEqual(fp.read(), 'PASS=2\n')
        self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o600)
        self.assertEqual(os.listdir(os.path.dirname(path)), ['secret'])

    def test_find_command(self):
        self.assertTrue(fdroidhost.common.find_command('sh'))
        self.assertIsNone(fdroidhost.common.find_command('nonexistent-command-for-test'))


class SyncTreeTest(unittest.TestCase):
    '''fdroidhost.common.sync_tree()'''

    def setUp(self):
        self._td = mkdtemp()
        self.src = Path(self._td.name) / 'src'
        self.dst = Path(self._td.name) / 'dst'
        self.src.mkdir()
        self.dst.mkdir()

    def tearDown(self):
        self._td.cleanup()

    def test_sync_tree(self):
        (self.src / 'a.apk').write_text('a')
        (self.src / 'index-v1.jar').write_text('index')
        (self.src / 'icons').mkdir()
        (self.src / 'icons' / 'a.png').write_text('png')
        (self.dst / 'stale.apk').write_text('stale')
        (self.dst / 'olddir').mkdir()
        (self.dst / 'olddir' / 'old.png').write_text('old')

        changed, deleted = fdroidhost.common.sync_tree(str(self.src), str(self.dst))
        self.assertEqual(changed, ['a.apk', os.path.join('icons', 'a.png'), 'index-v1.jar'])
        self.assertEqual(sorted(deleted), [os.path.join('olddir', 'old.png'), 'stale.apk'])
        self.assertEqual((self.dst / 'index-v1.jar').read_text(), 'index')
        self.assertFalse((self.dst / 'olddir').exists())

        changed, deleted = fdroidhost.common.sync_tree(str(self.src), str(self.dst))
        self.assertEqual(changed, [])
        self.assertEqual(deleted, [])

    def test_sync_tree_index_files_last(self):
        for name in ('index-v1.json', 'index-v1.jar', 'z.apk', 'entry.jar', 'a.apk'):
            (self.src / name).write_text(name)
        order = []
        real_replace_file = fdroidhost.common._replace_file

        def _replace_file(srcpath, dstpath):
            order.append(os.path.basename(dstpath))
            real_replace_file(srcpath, dstpath)

        with mock.patch('fdroidhost.common._replace_file', _replace_file):
            fdroidhost.common.sync_tree(str(self.src), str(self.dst))
        self.assertEqual(order[:2], ['a.apk', 'z.apk'])
        self.assertEqual(sorted(order[2:]), ['entry.jar', 'index-v1.jar', 'index-v1.json'])

    def test_sync_tree_stale_deleted_after_copy(self):
        (self.src / 'new.apk').write_text('new')
        (self.dst / 'old.apk').write_text('old')
        seen = []
        real_replace_file = fdroidhost.common._replace_file

        def _replace_file(srcpath, dstpath):
            seen.append(sorted(os.listdir(str(self.dst))))
            real_replace_file(srcpath, dstpath)

        with mock.patch('fdroidhost.common._replace_file', _replace_file):
            fdroidhost.common.sync_tree(str(self.src), str(self.dst))
        self.assertEqual(seen, [['old.apk']])
        self.assertEqual(os.listdir(str(self.dst)), ['new.apk'])

    def test_sync_tree_protect(self):
        (self.dst / 'keep.apk').write_text('keep')
        (self.dst / 'index-v1.jar').write_text('stale index')
        fdroidhost.common.sync_tree(str(self.src), str(self.dst),
                                    protect=lambda p: p.endswith('.apk'))
        self.assertEqual(os.listdir(str(self.dst)), ['keep.apk'])

    def test_sync_tree_no_delete(self):
        (self.src / 'new.yml').write_text('new')
        (self.dst / 'old.yml').write_text('old')
        changed, deleted = fdroidhost.common.sync_tree(str(self.src), str(self.dst), delete=False)
        self.assertEqual(changed, ['new.yml'])
        self.assertEqual(deleted, [])
        self.assertEqual(sorted(os.listdir(str(self.dst))), ['new.yml', 'old.yml'])

    def test_update_file(self):
        src = self.src / 'f'
        dst = self.dst / 'sub' / 'f'
        src.write_text('one')
        self.assertTrue(fdroidhost.common.update_file(str(src), str(dst)))
        self.assertFalse(fdroidhost.common.update_file(str(src), str(dst)))
        src.write_text('two')
        self.assertTrue(fdroidhost.common.update_file(str(src), str(dst)))
        self.assertEqual(dst.read_text(), 'two')
