#!/usr/bin/env python3
#
# deploy.py - part of the fdroidhost repository tools
# Copyright (C) 2026, the fdroidhost contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

import hashlib
import logging
import os
import re
import sys
import time
from argparse import ArgumentParser
from concurrent.futures import ThreadPoolExecutor, as_completed

from . import _
from . import common
from .exception import FDroidHostException, MirrorSyncError

config = None

REPO_SECTION = 'repo'


def _get_index_excludes(repo_section):
    """Return the list of rsync --exclude arguments for the index files."""
    excludes = []
    for f in common.INDEX_FILES:
        excludes.append('--exclude')
        excludes.append(repo_section + '/' + f)
    return excludes


def _get_landing_files(thisconfig):
    files = []
    for name in common.LANDING_FILES:
        path = os.path.join(thisconfig['landingdir'], name)
        if os.path.isfile(path):
            files.append(path)
    return files


def _md5sum(path):
    md5 = hashlib.md5()  # nosec GCS and S3 use MD5
    with open(path, 'rb') as f:
        while True:
            data = f.read(8192)
            if not data:
                break
            md5.update(data)
    return md5.hexdigest()


def _run(cmd, thisconfig, mirror, cwd=None):
    try:
        p = common.HostPopen(cmd, cwd=cwd, timeout=thisconfig['mirror_timeout'])
    except FDroidHostException as e:
        raise MirrorSyncError(_('Could not run {command}').format(command=cmd[0]),
                              str(e), mirror=mirror) from e
    if p.timed_out:
        raise MirrorSyncError(_('{command} timed out after {seconds} seconds')
                              .format(command=cmd[0], seconds=thisconfig['mirror_timeout']),
                              p.output, mirror=mirror)
    if p.returncode != 0:
        raise MirrorSyncError(_('{command} failed with exit code {code}')
                              .format(command=cmd[0], code=p.returncode),
                              p.output, mirror=mirror)
    return p


class Mirror:
    """A serving location that gets a full copy of repo/ plus the landing page."""

    def __init__(self, name):
        self.name = name

    def sync(self, thisconfig):
        raise NotImplementedError

    def __repr__(self):
        return '<{cls} {name}>'.format(cls=self.__class__.__name__, name=self.name)


class WebrootMirror(Mirror):
    """Deploy to a webroot with rsync, either a local path or ssh host:path.

    Upload the first time without the index files and delay the
    deletion as much as possible.  That keeps the repo functional
    while this update is running.  Then once it is complete, rerun the
    command again to upload the index files.
    """

    def __init__(self, url, name=None, identity_file=None):
        super().__init__(name or 'webroot:' + url)
        self.url = url.rstrip('/')
        self.identity_file = identity_file

    def rsyncargs(self):
        rsyncargs = ['rsync', '--archive', '--delete-after', '--safe-links', '--checksum']
        options = common.get_options()
        if options and options.verbose:
            rsyncargs += ['--verbose']
        if self.identity_file:
            rsyncargs += ['-e', 'ssh -oBatchMode=yes -oIdentitiesOnly=yes -i ' + self.identity_file]
        return rsyncargs

    def sync(self, thisconfig):
        if not common.find_command('rsync'):
            raise MirrorSyncError(_('rsync is missing, install it to deploy to {url}')
                                  .format(url=self.url), mirror=self.name)
        if ':' not in self.url:
            os.makedirs(self.url, exist_ok=True)
        rsyncargs = self.rsyncargs()
        target = self.url + '/'
        logging.info('rsyncing ' + REPO_SECTION + ' to ' + self.url)
        cwd = thisconfig['fdroiddir']
        _run(rsyncargs + _get_index_excludes(REPO_SECTION) + [REPO_SECTION, target],
             thisconfig, self.name, cwd=cwd)
        _run(rsyncargs + [REPO_SECTION, target], thisconfig, self.name, cwd=cwd)
        landing = _get_landing_files(thisconfig)
        if landing:
            _run(rsyncargs + landing + [target], thisconfig, self.name)


class LocalMirror(Mirror):
    """Reconcile a directory on this machine, e.g. a mounted volume."""

    def __init__(self, path, name=None):
        super().__init__(name or 'local:' + path)
        self.path = path

    def sync(self, thisconfig):
        path = self.path
        if not os.path.isabs(path):
            path = os.path.join(thisconfig['fdroiddir'], path)
        try:
            changed, deleted = common.sync_tree(thisconfig['repodir'],
                                                os.path.join(path, REPO_SECTION))
            for landing in _get_landing_files(thisconfig):
                dst = os.path.join(path, os.path.basename(landing))
                common.update_file(landing, dst)
        except OSError as e:
            raise MirrorSyncError(_('Failed to copy the repo to {path}').format(path=path),
                                  str(e), mirror=self.name) from e
        logging.info(_('{path}: {changed} file(s) updated, {deleted} deleted')
                     .format(path=path, changed=len(changed), deleted=len(deleted)))


class GcsMirror(Mirror):
    """Publish to a Google Cloud Storage bucket.

    The repo goes to gs://<bucket>/fdroid/repo and the landing page to
    the root of the bucket.  gsutil is used when it is installed,
    otherwise Apache libcloud with HMAC keys from fdroidhost.yml:
    gcs_access_key and gcs_secret_key.
    """

    prefix = 'fdroid/' + REPO_SECTION

    def __init__(self, bucket, name=None):
        super().__init__(name or 'gcs:' + bucket)
        self.bucket = bucket

    def sync(self, thisconfig):
        gsutil = thisconfig.get('gsutil') or common.find_command('gsutil')
        if gsutil:
            self.sync_gsutil(gsutil, thisconfig)
        else:
            self.sync_libcloud(thisconfig)

    def sync_gsutil(self, gsutil, thisconfig):
        logging.debug(_('using gsutil to sync with {url}').format(url='gs://' + self.bucket))
        url = 'gs://{bucket}/{prefix}'.format(bucket=self.bucket, prefix=self.prefix)
        exclude = '^(' + '|'.join(re.escape(f) for f in common.INDEX_FILES) + ')$'
        repodir = thisconfig['repodir']
        _run([gsutil, '-m', 'rsync', '-r', '-x', exclude, repodir, url], thisconfig, self.name)
        _run([gsutil, '-m', 'rsync', '-r', '-d', repodir, url], thisconfig, self.name)
        landing = _get_landing_files(thisconfig)
        if landing:
            _run([gsutil, 'cp'] + landing + ['gs://' + self.bucket + '/'], thisconfig, self.name)

    def sync_libcloud(self, thisconfig):
        logging.debug(_('using Apache libcloud to sync with {url}').format(url='gs://' + self.bucket))

        import libcloud.security

        libcloud.security.VERIFY_SSL_CERT = True
        from libcloud.storage.types import Provider, ContainerDoesNotExistError
        from libcloud.storage.providers import get_driver

        if not thisconfig.get('gcs_access_key') or not thisconfig.get('gcs_secret_key'):
            raise MirrorSyncError(
                _('gsutil is not installed, so gcs_access_key and gcs_secret_key must be set in fdroidhost.yml!'),
                mirror=self.name)

        cls = get_driver(Provider.GOOGLE_STORAGE)
        # stalled requests fail this mirror after mirror_timeout seconds
        driver = cls(thisconfig['gcs_access_key'], thisconfig['gcs_secret_key'],
                     timeout=thisconfig['mirror_timeout'])
        try:
            container = driver.get_container(container_name=self.bucket)
        except ContainerDoesNotExistError:
            container = driver.create_container(container_name=self.bucket)
            logging.info(_('Created new container "{name}"').format(name=container.name))

        objs = dict()
        for obj in container.list_objects():
            if obj.name.startswith(self.prefix + '/'):
                objs[obj.name] = obj

        repodir = thisconfig['repodir']
        src_files, _dirs = common.list_tree(repodir)
        index_files = sorted(f for f in src_files if common.is_index_file(f))
        uploads = [(os.path.join(repodir, f), self.prefix + '/' + f)
                   for f in sorted(src_files.difference(index_files)) + index_files]
        uploads += [(f, os.path.basename(f)) for f in _get_landing_files(thisconfig)]

        for path, object_name in uploads:
            obj = objs.pop(object_name, None)
            if obj is not None and obj.size == os.path.getsize(path) \
               and obj.hash == _md5sum(path):
                continue
            logging.info(' uploading {path} to gs://{bucket}/{name}'
                         .format(path=os.path.relpath(path, thisconfig['fdroiddir']),
                                 bucket=self.bucket, name=object_name))
            with open(path, 'rb') as iterator:
                driver.upload_object_via_stream(iterator=iterator, container=container,
                                                object_name=object_name)

        # delete the remnants in the bucket, they do not exist locally
        while objs:
            object_name, obj = objs.popitem()
            logging.warning(' deleting gs://' + self.bucket + '/' + object_name)
            if not driver.delete_object(obj):
                logging.warning('Could not delete gs://' + self.bucket + '/' + object_name)


class MirrorResult:
    def __init__(self, name, ok, error=None, timestamp=None):
        self.name = name
        self.ok = ok
        self.error = error
        self.timestamp = timestamp if timestamp is not None else time.time()

    def __repr__(self):
        return '<MirrorResult {name} {status}>'.format(name=self.name,
                                                       status='ok' if self.ok else 'failed')


def get_mirrors(thisconfig):
    """Instantiate the mirrors configured in fdroidhost.yml."""
    mirrors = []
    for d in thisconfig.get('mirrors', []):
        if d['type'] == 'webroot':
            mirrors.append(WebrootMirror(d['url'], name=d.get('name'),
                                         identity_file=d.get('identity_file')))
        elif d['type'] == 'local':
            mirrors.append(LocalMirror(d['url'], name=d.get('name')))
        elif d['type'] == 'gcs':
            mirrors.append(GcsMirror(d['bucket'], name=d.get('name')))
    return mirrors


def _sync_one(mirror, thisconfig):
    try:
        mirror.sync(thisconfig)
    except MirrorSyncError as e:
        logging.error(_('Mirror {name} failed: {error}').format(name=mirror.name, error=e))
        return MirrorResult(mirror.name, False, e)
    except Exception as e:
        # libcloud and friends raise their own errors, the other mirrors still run
        logging.error(_('Mirror {name} failed: {error}').format(name=mirror.name, error=e))
        return MirrorResult(mirror.name, False, MirrorSyncError(str(e), mirror=mirror.name))
    logging.info(_('Mirror {name} is up to date').format(name=mirror.name))
    return MirrorResult(mirror.name, True)


def sync_mirrors(mirrors=None, thisconfig=None):
    """Push the live repo to every mirror at the same time.

    Every mirror is attempted, a failing one does not stop the others.

    Returns
    -------
    A list of MirrorResult, in the order of mirrors.
    """
    if thisconfig is None:
        thisconfig = common.get_config()
    if mirrors is None:
        mirrors = get_mirrors(thisconfig)
    if not mirrors:
        return []

    results = {}
    with ThreadPoolExecutor(max_workers=len(mirrors)) as executor:
        futures = {executor.submit(_sync_one, m, thisconfig): i for i, m in enumerate(mirrors)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return [results[i] for i in range(len(mirrors))]


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    common.parse_args(parser)
    config = common.read_config()

    mirrors = get_mirrors(config)
    if not mirrors:
        logging.warning(_('No mirrors set! Edit your fdroidhost.yml to set "mirrors", or set GCS_BUCKET.'))
        sys.exit(1)
    if not os.path.isdir(config['repodir']):
        raise FDroidHostException(_('No repo at {path}, run "fdroidhost init" first!')
                                  .format(path=config['repodir']))

    results = sync_mirrors(mirrors, config)
    failed = [r.name for r in results if not r.ok]
    if failed:
        logging.error(_('Failed to update mirrors: {names}').format(names=', '.join(failed)))
        sys.exit(1)


if __name__ == "__main__":
    main()
