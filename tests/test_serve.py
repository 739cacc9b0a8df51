#!/usr/bin/env python3

import http.client
import os
import threading
import unittest

import fdroidhost.common
import fdroidhost.serve

from .shared_test_code import (FakeIndexBuilder, make_test_config, mkdtemp,
                               write_fake_apk, write_fake_keystore)


class ServeTest(unittest.TestCase):
    '''fdroidhost/serve.py'''

    def setUp(self):
        self._td = mkdtemp()
        self.testdir = self._td.name
        self.config = make_test_config(self.testdir)
        write_fake_keystore(self.config)
        fdroidhost.common.write_secret_file(self.config['envfile'], 'FDROID_KEYSTORE_PASS=secret\n')
        with open(os.path.join(self.testdir, 'fdroidhost.yml'), 'w') as fp:
            fp.write('keystorepass: secret\n')
        with open(os.path.join(self.testdir, 'index.html'), 'w') as fp:
            fp.write('<html>landing</html>')
        self.apk = write_fake_apk(self.config['repodir'], 'org.example.one_1.apk')

        self.httpd = fdroidhost.serve.make_server(self.config, '127.0.0.1', 0)
        self.port = self.httpd.server_address[1]
        self.thread = threading.Thread(target=self.httpd.serve_forever)
        self.thread.start()

    def tearDown(self):
        self.httpd.shutdown()
        self.httpd.server_close()
        self.thread.join()
        self._td.cleanup()

    def request(self, path, method='GET'):
        conn = http.client.HTTPConnection('127.0.0.1', self.port, timeout=10)
        try:
            conn.request(method, path)
            response = conn.getresponse()
            body = response.read()
            return response, body
        finally:
            conn.close()

    def build_index(self):
        FakeIndexBuilder().build(self.testdir, {})

    def test_healthz(self):
        response, body = self.request(fdroidhost.serve.HEALTH_PATH)
        self.assertEqual(response.status, 200)
        self.assertEqual(body, b'ok\n')
        self.assertEqual(response.getheader('Cache-Control'), 'no-cache')

    def test_readyz(self):
        response, body = self.request(fdroidhost.serve.READY_PATH)
        self.assertEqual(response.status, 503)
        self.build_index()
        response, body = self.request(fdroidhost.serve.READY_PATH)
        self.assertEqual(response.status, 200)
        response, body = self.request(fdroidhost.serve.READY_PATH, 'HEAD')
        self.assertEqual(response.status, 200)
        self.assertEqual(body, b'')

    def test_serve_repo_prefixes(self):
        self.build_index()
        for prefix in ('/fdroid/repo/', '/repo/'):
            response, body = self.request(prefix + 'org.example.one_1.apk')
            self.assertEqual(response.status, 200, prefix)
            with open(self.apk, 'rb') as fp:
                self.assertEqual(body, fp.read())
            self.assertEqual(response.getheader('Content-Type'),
                             'application/vnd.android.package-archive')
            self.assertEqual(response.getheader('Cache-Control'), fdroidhost.serve.CACHE_PACKAGE)
            self.assertEqual(response.getheader('X-Content-Type-Options'), 'nosniff')

            response, body = self.request(prefix + 'index-v1.jar')
            self.assertEqual(response.status, 200, prefix)
            self.assertEqual(response.getheader('Cache-Control'), fdroidhost.serve.CACHE_NO_CACHE)

    def test_serve_head(self):
        response, body = self.request('/repo/org.example.one_1.apk', 'HEAD')
        self.assertEqual(response.status, 200)
        self.assertEqual(body, b'')
        self.assertEqual(int(response.getheader('Content-Length')), os.path.getsize(self.apk))

    def test_serve_landing_page(self):
        for path in ('/', '/index.html'):
            response, body = self.request(path)
            self.assertEqual(response.status, 200, path)
            self.assertEqual(body, b'<html>landing</html>')
            self.assertEqual(response.getheader('Cache-Control'), fdroidhost.serve.CACHE_NO_CACHE)

    def test_secrets_not_served(self):
        for path in ('/keystore/fdroid.keystore',
                     '/keystore/.env',
                     '/fdroidhost.yml',
                     '/config.yml',
                     '/.fdroidhost-state.json',
                     '/repo/../keystore/.env',
                     '/fdroid/repo/../../keystore/fdroid.keystore',
                     '/repo/%2e%2e/keystore/.env',
                     '/repo/.hidden',
                     '/metadata/org.example.one.yml'):
            response, body = self.request(path)
            self.assertEqual(response.status, 404, path)
            self.assertNotIn(b'secret', body)

    def test_no_directory_listing(self):
        os.makedirs(os.path.join(self.config['repodir'], 'org.example.one'))
        response, body = self.request('/repo/org.example.one/')
        self.assertEqual(response.status, 404)
        self.assertNotIn(b'org.example.one', body)

    def test_missing_file(self):
        response, body = self.request('/repo/org.example.none_1.apk')
        self.assertEqual(response.status, 404)

    def test_map_path(self):
        handler = fdroidhost.serve.RepoRequestHandler.__new__(fdroidhost.serve.RepoRequestHandler)
        handler.server = self.httpd
        handler.cache_control = None
        repodir = self.config['repodir']
        self.assertEqual(handler.map_path('/repo/a.apk?x=1'), os.path.join(repodir, 'a.apk'))
        self.assertEqual(handler.map_path('/fdroid/repo/org.example/en-US/icon.png'),
                         os.path.join(repodir, 'org.example', 'en-US', 'icon.png'))
        self.assertEqual(handler.map_path('/repo/'), repodir)
        self.assertIsNone(handler.map_path('/repository/a.apk'))
        self.assertIsNone(handler.map_path('/repo/sub/../../x'))


if __name__ == "__main__":
    unittest.main()
