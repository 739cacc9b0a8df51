#!/usr/bin/env python3
#
# index.py - part of the fdroidhost repository tools
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
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import time
import zipfile

import yaml

from . import _
from . import common
from . import keystore
from . import metadata
from .exception import (FDroidHostException, IndexBuildError,
                        MetaDataException, VerificationException)

SIGNED_INDEX = 'index-v1.jar'
INDEX_JSON = 'index-v1.json'

TOOL_CONFIG_HEADER = '# generated by fdroidhost from fdroidhost.yml, edits will be overwritten\n'


class RepositoryIndex:
    def __init__(self, version=None, signed_payload=None, timestamp=None, artifact_count=0):
        self.version = version
        self.signed_payload = signed_payload
        self.timestamp = timestamp
        self.artifact_count = artifact_count

    def __repr__(self):
        return ('<RepositoryIndex version={version} timestamp={timestamp} artifacts={count}>'
                .format(version=self.version, timestamp=self.timestamp, count=self.artifact_count))


def _load_index_data(repodir):
    jar = os.path.join(repodir, SIGNED_INDEX)
    jsonfile = os.path.join(repodir, INDEX_JSON)
    try:
        if os.path.isfile(jsonfile):
            with open(jsonfile, encoding='utf-8') as fp:
                return json.load(fp)
        if os.path.isfile(jar):
            with zipfile.ZipFile(jar) as jf:
                return json.loads(jf.read(INDEX_JSON).decode('utf-8'))
    except (KeyError, ValueError, zipfile.BadZipFile) as e:
        raise FDroidHostException(_('Could not read {path}: {error}').format(path=jar, error=e)) from e
    return None


def read_repository_index(repodir):
    """Describe the signed index in repodir, or return None when there is none yet."""
    jar = os.path.join(repodir, SIGNED_INDEX)
    if not os.path.isfile(jar):
        return None

    data = _load_index_data(repodir)
    repo = data.get('repo', {})
    packages = data.get('packages', {})
    return RepositoryIndex(
        version=repo.get('version'),
        signed_payload=jar,
        timestamp=repo.get('timestamp'),
        artifact_count=sum(len(v) for v in packages.values()),
    )


def indexed_apk_names(repodir, appid):
    """Return the file names of the APKs the current index lists for appid."""
    data = _load_index_data(repodir)
    if not data:
        return []
    names = []
    for package in data.get('packages', {}).get(appid, []):
        name = package.get('apkName')
        # only plain file names in repo/, never a path out of it
        if name and os.path.basename(name) == name and name.endswith('.apk'):
            names.append(name)
    return names


def make_tool_config(thisconfig):
    """Return the config.yml contents for the fdroid tool.

    The passphrases are only referenced by environment variable name,
    fdroid resolves {env: NAME} values itself.
    """
    return {
        'repo_url': thisconfig['repo_url'],
        'repo_name': thisconfig['repo_name'],
        'repo_description': thisconfig['repo_description'],
        'repo_keyalias': thisconfig['repo_keyalias'],
        'keystore': thisconfig['keystore'],
        'keystorepass': {'env': 'FDROID_KEYSTORE_PASS'},
        'keypass': {'env': 'FDROID_KEY_PASS'},
        'keydname': thisconfig['keydname'],
        'allow_disabled_algorithms': bool(thisconfig['allow_disabled_algorithms']),
        'archive_older': thisconfig['archive_older'],
    }


def write_tool_config(thisconfig, path=None):
    """Write the fdroid tool config, a pure function of fdroidhost.yml."""
    if path is None:
        path = os.path.join(thisconfig['fdroiddir'], common.TOOL_CONFIG_FILE)
    data = yaml.safe_dump(make_tool_config(thisconfig), default_flow_style=False,
                          allow_unicode=True, sort_keys=True)
    # fdroid complains unless a config with keystore settings is 0600
    common.write_secret_file(path, TOOL_CONFIG_HEADER + data)
    return path


def _iter_input_files(thisconfig):
    for path in common.get_apks(thisconfig['repodir']):
        yield path
    for root, dirs, files in sorted(os.walk(thisconfig['metadatadir'])):
        dirs.sort()
        for name in sorted(files):
            yield os.path.join(root, name)


def inputs_digest(thisconfig):
    """Hash everything that goes into an index build.

    That is every APK, every metadata file and the tool config.  The
    same digest means a new build would produce the same index.
    """
    h = hashlib.sha256()
    for path in _iter_input_files(thisconfig):
        h.update(os.path.relpath(path, thisconfig['fdroiddir']).encode('utf-8'))
        h.update(common.sha256sum(path).encode('utf-8'))
    h.update(yaml.safe_dump(make_tool_config(thisconfig), sort_keys=True).encode('utf-8'))
    return h.hexdigest()


def read_state(thisconfig):
    statefile = thisconfig['statefile']
    if not os.path.isfile(statefile):
        return {}
    try:
        with open(statefile, encoding='utf-8') as fp:
            return json.load(fp)
    except ValueError:
        logging.warning(_('Ignoring corrupt {path}').format(path=statefile))
        return {}


def write_state(thisconfig, digest):
    state = {'digest': digest, 'timestamp': int(time.time())}
    fd, tmp = tempfile.mkstemp(dir=thisconfig['fdroiddir'], prefix='.tmp-')
    with os.fdopen(fd, 'w', encoding='utf-8') as fp:
        json.dump(state, fp, indent=2, sort_keys=True)
    os.replace(tmp, thisconfig['statefile'])


def needs_build(thisconfig):
    """Whether there is no index yet, or APKs, metadata or config changed since the last build."""
    if read_repository_index(thisconfig['repodir']) is None:
        return True
    return read_state(thisconfig).get('digest') != inputs_digest(thisconfig)


class FdroidIndexBuilder:
    """Build a signed index by running `fdroid update` from fdroidserver.

    The working directory has to contain repo/, metadata/ and
    config.yml, the passphrases come in via the environment.
    """

    def __init__(self, thisconfig):
        self.config = thisconfig

    def build(self, workdir, envs):
        cmd = [self.config['fdroid'], 'update', '--create-metadata']
        if self.config.get('allow_disabled_algorithms'):
            cmd.append('--allow-disabled-algorithms')
        try:
            p = common.HostPopen(cmd, cwd=workdir, envs=envs,
                                 timeout=self.config['build_timeout'])
        except FDroidHostException as e:
            raise IndexBuildError(_('Could not run the index builder'), str(e)) from e
        if p.timed_out:
            raise IndexBuildError(
                _('"fdroid update" timed out after {seconds} seconds')
                .format(seconds=self.config['build_timeout']), p.output)
        if p.returncode != 0:
            raise IndexBuildError(_('"fdroid update" failed'), p.output)


def _is_apk(relpath):
    return os.path.dirname(relpath) == '' and relpath.endswith('.apk')


def build_index(thisconfig=None, identity=None, builder=None):
    """Build a freshly signed index covering everything in the Artifact Store.

    The build runs on a copy of repo/ and metadata/ in a staging
    directory.  Only when it succeeded and produced a signed index is
    the result promoted into the live repo/, with the index files
    swapped in last.  On failure, the live repo/ is untouched and the
    previous index stays the one being served.

    An empty repo/ is fine, that builds an empty but signed index.

    Raises
    ------
    IndexBuildError
        If there is no signing key, the builder failed or timed out,
        or it did not produce a signed index.
    """
    if thisconfig is None:
        thisconfig = common.get_config()
    if identity is None:
        identity = keystore.get_signing_identity(thisconfig)
    if not identity.exists():
        raise IndexBuildError(_('No signing key at {path}, run "fdroidhost init" first!')
                              .format(path=identity.keystore))
    if builder is None:
        builder = FdroidIndexBuilder(thisconfig)

    repodir = thisconfig['repodir']
    metadatadir = thisconfig['metadatadir']
    archivedir = thisconfig['archivedir']
    os.makedirs(repodir, exist_ok=True)
    os.makedirs(metadatadir, exist_ok=True)
    try:
        metadata.write_configured_metadata(thisconfig)
    except MetaDataException as e:
        raise IndexBuildError(str(e)) from e

    digest = inputs_digest(thisconfig)
    logging.info(_('Updating repository index for {count} APK(s)...')
                 .format(count=len(common.get_apks(repodir))))

    workdir = tempfile.mkdtemp(prefix='.build-', dir=thisconfig['fdroiddir'])
    try:
        stagedrepo = os.path.join(workdir, 'repo')
        stagedmetadata = os.path.join(workdir, 'metadata')
        stagedarchive = os.path.join(workdir, 'archive')
        shutil.copytree(repodir, stagedrepo)
        shutil.copytree(metadatadir, stagedmetadata)
        if os.path.isdir(archivedir):
            shutil.copytree(archivedir, stagedarchive)
        staged_apks = set(os.path.basename(p) for p in common.get_apks(stagedrepo))
        write_tool_config(thisconfig, os.path.join(workdir, common.TOOL_CONFIG_FILE))

        builder.build(workdir, identity.env_vars())

        if not os.path.isfile(os.path.join(stagedrepo, SIGNED_INDEX)):
            raise IndexBuildError(_('The index builder did not produce {name}')
                                  .format(name=SIGNED_INDEX))

        def added_during_build(relpath):
            return _is_apk(relpath) and relpath not in staged_apks

        # archived APKs land in archive/ before they leave repo/
        if os.path.isdir(stagedarchive):
            common.sync_tree(stagedarchive, archivedir)
        common.sync_tree(stagedrepo, repodir, protect=added_during_build)
        common.sync_tree(stagedmetadata, metadatadir, delete=False)
    except OSError as e:
        raise IndexBuildError(_('Failed to stage the index build'), str(e)) from e
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

    write_state(thisconfig, digest)
    index = read_repository_index(repodir)
    logging.info(_('Repository index updated: {count} APK(s)').format(count=index.artifact_count))
    return index


def verify_index_signature(jar, identity, thisconfig=None):
    """Verify the index JAR is signed, and signed by this repo's key.

    jarsigner is very shitty: unsigned JARs pass as "verified"! So
    this has to turn on -strict then check for result 4, since this
    does not expect the signature to be from a CA-signed certificate.
    The signer is then compared to the fingerprint of the identity.

    Raises
    ------
    VerificationException
        If the JAR's signature could not be verified.
    """
    if thisconfig is None:
        thisconfig = common.get_config()
    for cmd in ('jarsigner', 'keytool'):
        if not thisconfig.get(cmd):
            raise FDroidHostException(_('{command} not found! Install a Java JDK.').format(command=cmd))

    error = _('JAR signature failed to verify: {path}').format(path=jar)
    with tempfile.TemporaryDirectory() as tmpdir:
        # index-v1.jar may be signed with SHA1, keep that verifiable
        java_security = os.path.join(tmpdir, 'java.security')
        with open(java_security, 'w') as fp:
            fp.write('jdk.jar.disabledAlgorithms=MD2, RSA keySize < 1024')
        os.chmod(java_security, 0o400)
        try:
            output = subprocess.check_output(
                [thisconfig['jarsigner'], '-J-Djava.security.properties=' + java_security,
                 '-strict', '-verify', jar],
                stderr=subprocess.STDOUT, timeout=thisconfig['keytool_timeout'])
            raise VerificationException(error + '\n' + output.decode('utf-8'))
        except subprocess.TimeoutExpired as e:
            raise VerificationException(
                error + '\n' + _('jarsigner timed out after {seconds} seconds')
                .format(seconds=thisconfig['keytool_timeout'])) from e
        except subprocess.CalledProcessError as e:
            if e.returncode != 4:
                raise VerificationException(error + '\n' + e.output.decode('utf-8')) from e

    p = common.HostPopen([thisconfig['keytool'], '-printcert', '-jarfile', jar, '-J-Duser.language=en'],
                         envs={'LC_ALL': 'C.UTF-8'}, timeout=thisconfig['keytool_timeout'])
    m = re.search(r'SHA256:\s*([0-9A-Fa-f:]+)', p.output)
    if p.returncode != 0 or not m:
        raise VerificationException(error + '\n' + p.output)
    signer = m.group(1).replace(':', '').upper()
    expected = identity.fingerprint or keystore.get_fingerprint(identity, thisconfig)
    if signer != expected:
        raise VerificationException(
            _('{path} is signed by {signer}, not by the repo key {expected}')
            .format(path=jar, signer=signer, expected=expected))
    logging.debug(_('JAR signature verified: {path}').format(path=jar))
