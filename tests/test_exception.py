#!/usr/bin/env python3

import unittest

import fdroidhost
from fdroidhost.exception import (FDroidHostException, IndexBuildError,
                                  MetaDataException, MirrorSyncError)


class ExceptionTest(unittest.TestCase):
    '''fdroidhost/exception.py'''

    def test_str(self):
        self.assertEqual(str(FDroidHostException('plain message')), 'plain message')
        self.assertEqual(str(FDroidHostException()), 'fdroidhost.exception')

    def test_str_with_detail(self):
        e = IndexBuildError('"fdroid update" failed', 'line one\nline two\n')
        self.assertEqual(
            str(e),
            '"fdroid update" failed\n==== detail begin ====\nline one\nline two\n==== detail end ====',
        )

    def test_shortened_detail(self):
        e = FDroidHostException('long', 'x' * 20000)
        shortened = e.shortened_detail()
        self.assertTrue(shortened.startswith('[...]\n'))
        self.assertEqual(len(shortened), 16000 + len('[...]\n'))
        self.assertEqual(FDroidHostException('short', 'abc').shortened_detail(), 'abc')

    def test_mirror_sync_error(self):
        e = MirrorSyncError('rsync failed', 'detail', mirror='webroot:host:/srv')
        self.assertEqual(e.mirror, 'webroot:host:/srv')
        self.assertIsInstance(e, FDroidHostException)

    def test_metadata_exception(self):
        self.assertEqual(str(MetaDataException('bad field')), 'bad field')

    def test_package_exports(self):
        self.assertIs(fdroidhost.FDroidHostException, FDroidHostException)
        self.assertTrue(callable(fdroidhost.ensure_signing_identity))
        self.assertTrue(callable(fdroidhost.build_index))
        self.assertTrue(callable(fdroidhost.sync_mirrors))
        self.assertTrue(callable(fdroidhost.PublishCycle))


if __name__ == "__main__":
    unittest.main()
