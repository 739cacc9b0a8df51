#!/usr/bin/env python3
#
# keystore.py - part of the fdroidhost repository tools
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

import fcntl
import logging
import os

from . import _
from . import common
from .exception import FDroidHostException, IdentityCreationError

JKS_MAGIC = b'\xfe\xed\xfe\xed'
JCEKS_MAGIC = b'\xce\xce\xce\xce'


class SigningIdentity:
    """The repo signing key and its keystore.

    There is exactly one per repo.  Once the keystore exists it is
    never regenerated, since every client that already trusts the repo
    pinned the fingerprint of this key.
    """

    def __init__(self, keystore, keyalias, keydname, keystorepass, keypass):
        self.keystore = keystore
        self.keyalias = keyalias
        self.keydname = keydname
        self.keystorepass = keystorepass
        self.keypass = keypass
        self.created = False
        self.fingerprint = None

    def exists(self):
        return os.path.isfile(self.keystore)

    def env_vars(self):
        """Environment for tools that read the passphrases via env, never via argv."""
        return {
            'FDROID_KEYSTORE_PASS': self.keystorepass,
            'FDROID_KEY_PASS': self.keypass,
        }

    def __repr__(self):
        return '<SigningIdentity {alias} in {path}>'.format(alias=self.keyalias, path=self.keystore)


def read_env_file(path):
    """Parse the KEY=value lines of a file written by ensure_signing_identity()."""
    values = {}
    if not os.path.isfile(path):
        return values
    with open(path, encoding='utf-8') as fp:
        for line in fp:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            k, v = line.split('=', 1)
            values[k.strip()] = v.strip()
    return values


def load_passphrases(thisconfig):
    """Find the keystore passphrases.

    Explicit settings from fdroidhost.yml or the environment win, then
    the values saved when the key was generated, then the old default.
    """
    saved = read_env_file(thisconfig['envfile'])
    keystorepass = (thisconfig.get('keystorepass')
                    or saved.get('FDROID_KEYSTORE_PASS')
                    or common.DEFAULT_PASSWORD)
    keypass = (thisconfig.get('keypass')
               or saved.get('FDROID_KEY_PASS')
               or keystorepass)
    if keypass != keystorepass and is_pkcs12(thisconfig['keystore']):
        logging.warning(_('PKCS12 keystores do not support a separate key passphrase, using the keystore passphrase'))
        keypass = keystorepass
    return keystorepass, keypass


def is_pkcs12(path):
    """Whether the keystore at path exists and is not a JKS or JCEKS one."""
    if not os.path.isfile(path):
        return False
    with open(path, 'rb') as fp:
        magic = fp.read(4)
    return magic not in (JKS_MAGIC, JCEKS_MAGIC)


def get_signing_identity(thisconfig=None):
    if thisconfig is None:
        thisconfig = common.get_config()
    keystorepass, keypass = load_passphrases(thisconfig)
    return SigningIdentity(thisconfig['keystore'], thisconfig['repo_keyalias'],
                           thisconfig['keydname'], keystorepass, keypass)


def _keytool_env(identity):
    return {
        'LC_ALL': 'C.UTF-8',
        'FDROID_KEY_STORE_PASS': identity.keystorepass,
        'FDROID_KEY_PASS': identity.keypass,
    }


def genkeystore(identity, path, thisconfig):
    """Generate a new key pair with a self-signed certificate in a new keystore at path."""
    keytool = thisconfig.get('keytool')
    if not keytool:
        raise IdentityCreationError(_('keytool not found! Install a Java JDK to generate the signing key.'))

    logging.info('Generating a new key in "' + path + '"...')
    cmd = [keytool, '-genkey',
           '-keystore', path,
           '-alias', identity.keyalias,
           '-keyalg', 'RSA', '-keysize', str(thisconfig['keysize']),
           '-sigalg', 'SHA256withRSA',
           '-validity', str(thisconfig['validity']),
           '-storetype', 'pkcs12',
           '-storepass:env', 'FDROID_KEY_STORE_PASS',
           '-keypass:env', 'FDROID_KEY_PASS',
           '-dname', identity.keydname,
           '-J-Duser.language=en']
    try:
        p = common.HostPopen(cmd, envs=_keytool_env(identity),
                             timeout=thisconfig['keytool_timeout'])
    except FDroidHostException as e:
        raise IdentityCreationError(_('Failed to run keytool'), str(e)) from e
    if p.returncode != 0 or not os.path.isfile(path):
        raise IdentityCreationError(_('Failed to generate key'), p.output)


def get_fingerprint(identity, thisconfig=None):
    """Return the SHA-256 fingerprint of the repo signing certificate.

    Raises
    ------
    FDroidHostException
        If there is no keystore or the certificate can not be read.
    """
    if thisconfig is None:
        thisconfig = common.get_config()
    if not identity.exists():
        raise FDroidHostException(
            _('Keystore not found at {path}').format(path=identity.keystore))
    keytool = thisconfig.get('keytool')
    if not keytool:
        raise FDroidHostException(_('keytool not found! Install a Java JDK.'))

    p = common.HostPopenBytes([keytool, '-exportcert',
                               '-keystore', identity.keystore,
                               '-alias', identity.keyalias,
                               '-storepass:env', 'FDROID_KEY_STORE_PASS'],
                              envs=_keytool_env(identity),
                              timeout=thisconfig['keytool_timeout'],
                              stderr_to_stdout=False)
    if p.returncode != 0 or len(p.output) < 20:
        raise FDroidHostException(_('Failed to get public key'),
                                  p.output.decode('utf-8', 'ignore'))
    identity.fingerprint = common.get_cert_fingerprint(p.output)
    return identity.fingerprint


def _create_identity(identity, thisconfig):
    keystorepass = thisconfig.get('keystorepass') or common.genpassword()
    keypass = thisconfig.get('keypass') or keystorepass
    if keypass != keystorepass:
        # PKCS12 keystores have one passphrase, keytool ignores -keypass
        logging.warning(_('PKCS12 keystores do not support a separate key passphrase, using the keystore passphrase'))
        keypass = keystorepass
    identity.keystorepass = keystorepass
    identity.keypass = keypass

    suffix = '.tmp-%d' % os.getpid()
    tmp_keystore = identity.keystore + suffix
    tmp_envfile = thisconfig['envfile'] + suffix
    for path in (tmp_keystore, tmp_envfile):
        if os.path.exists(path):
            os.remove(path)

    try:
        common.write_secret_file(
            tmp_envfile,
            'FDROID_KEYSTORE_PASS={}\nFDROID_KEY_PASS={}\n'.format(keystorepass, keypass),
        )
        genkeystore(identity, tmp_keystore, thisconfig)
        os.chmod(tmp_keystore, 0o600)
        # link() never replaces an existing file, unlike rename()
        os.link(tmp_keystore, identity.keystore)
        os.replace(tmp_envfile, thisconfig['envfile'])
    except FileExistsError as e:
        raise IdentityCreationError(
            _('Keystore appeared at {path} while generating, refusing to replace it')
            .format(path=identity.keystore)) from e
    except OSError as e:
        raise IdentityCreationError(
            _('Failed to write keystore {path}').format(path=identity.keystore), str(e)) from e
    finally:
        for path in (tmp_keystore, tmp_envfile):
            if os.path.exists(path):
                os.remove(path)


def ensure_signing_identity(thisconfig=None):
    """Make sure the repo signing key exists, generating it when absent.

    Safe to call on every bootstrap, an existing keystore is never
    touched.  Creation holds an exclusive lock on keystore/.lock and
    checks again after getting it, so when two bootstraps race, the
    second one finds the key of the first one and uses that.  The
    passphrases are saved to keystore/.env (mode 0600) for automation.

    Raises
    ------
    IdentityCreationError
        If the key could not be generated or written.  No index may be
        built without a signing key.
    """
    if thisconfig is None:
        thisconfig = common.get_config()
    identity = get_signing_identity(thisconfig)
    if identity.exists():
        logging.debug(_('Using existing keystore "{path}"').format(path=identity.keystore))
        return identity

    keystoredir = os.path.dirname(identity.keystore)
    try:
        os.makedirs(keystoredir, mode=0o700, exist_ok=True)
        lockfd = os.open(os.path.join(keystoredir, common.LOCK_FILE),
                         os.O_CREAT | os.O_RDWR, 0o600)
    except OSError as e:
        raise IdentityCreationError(
            _('Cannot create keystore directory {path}').format(path=keystoredir), str(e)) from e

    try:
        fcntl.flock(lockfd, fcntl.LOCK_EX)
        if identity.exists():
            logging.info(_('Keystore "{path}" was created by another process, using it')
                         .format(path=identity.keystore))
            return get_signing_identity(thisconfig)
        _create_identity(identity, thisconfig)
    finally:
        fcntl.flock(lockfd, fcntl.LOCK_UN)
        os.close(lockfd)

    identity.created = True
    try:
        fingerprint = get_fingerprint(identity, thisconfig)
    except FDroidHostException as e:
        raise IdentityCreationError(_('Generated key can not be read back'), str(e)) from e

    logging.warning('\n'
                    + _('=== IMPORTANT: Repository Fingerprint ===') + '\n'
                    + 'SHA256: ' + common.format_fingerprint(fingerprint) + '\n'
                    + _('Save this fingerprint! Users need it to verify the repository.'))
    return identity
