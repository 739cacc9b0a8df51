#!/usr/bin/env python3
#
# common.py - part of the fdroidhost repository tools
#
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

# common.py is imported by all modules, so do not import third-party
# libraries here as they will become a requirement for all commands.

import base64
import filecmp
import glob
import hashlib
import logging
import os
import re
import shutil
import socket
import stat
import subprocess
import tempfile

import yaml

from fdroidhost import _
from fdroidhost.exception import ConfigurationException, FDroidHostException


CONFIG_FILE = 'fdroidhost.yml'
TOOL_CONFIG_FILE = 'config.yml'
STATE_FILE = '.fdroidhost-state.json'
ENV_FILE = '.env'
LOCK_FILE = '.lock'
LANDING_FILES = ['index.html', 'index.png']

# the shell tooling this replaces fell back to this when nothing was set
DEFAULT_PASSWORD = 'changeme'  # nosec B105

MIRROR_TYPES = ('webroot', 'local', 'gcs')

VALID_APPLICATION_ID_REGEX = re.compile(r'''(?:^[a-z_]+(?:\d*[a-zA-Z_]*)*)(?:\.[a-z_]+(?:\d*[a-zA-Z_]*)*)*$''',
                                        re.IGNORECASE)

# environment variables recognized on top of fdroidhost.yml
ENV_OVERRIDES = {
    'FDROID_REPO_URL': 'repo_url',
    'FDROID_KEYSTORE_PASS': 'keystorepass',
    'FDROID_KEY_PASS': 'keypass',
}

config = None
options = None

# All paths in the config must be strings, never pathlib.Path instances
default_config = {
    'repo_url': 'https://f-droid.example.org/fdroid/repo',
    'repo_name': 'My F-Droid Repository',
    'repo_description': _('This is a repository of apps to be used with F-Droid.'),
    'repo_keyalias': 'fdroid',
    'keystore': 'keystore/fdroid.keystore',
    'keydname': 'CN=fdroidhost, OU=F-Droid Repository',
    'keysize': 4096,
    'validity': 10000,
    'allow_disabled_algorithms': True,
    'archive_older': 0,
    'fdroid': 'fdroid',
    'build_timeout': 3600,
    'mirror_timeout': 1800,
    'keytool_timeout': 300,
    'serve_host': '0.0.0.0',  # nosec B104 runs inside a container
    'serve_port': 8080,
    'serve_prefixes': ['/repo/', '/fdroid/repo/'],
    'mirrors': [],
    'apps': {},
}

# files that finalize a repo, these get replaced last
NO_GPG_INDEX_FILES = [
    "entry.jar",
    "index-v1.jar",
    "index.css",
    "index.html",
    "index.jar",
    "index.png",
    "index.xml",
]

GPG_INDEX_FILES = [
    "altstore-index.json",
    "entry.json",
    "index-v1.json",
    "index-v2.json",
]

INDEX_FILES = sorted(
    NO_GPG_INDEX_FILES + GPG_INDEX_FILES + [i + '.asc' for i in GPG_INDEX_FILES]
)


def get_options():
    """Return options as set up by parse_args()."""
    return options


def parse_args(parser):
    """Call parser.parse_args(), store result in module-level variable and return it."""
    global options
    options = parser.parse_args()
    return options


def setup_global_opts(parser):
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help=_("Spew out even more information than normal"),
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=False,
        help=_("Restrict output to warnings and errors"),
    )
    parser.add_argument(
        "--fdroid-dir",
        default=None,
        help=_("Repository root directory (default: $FDROID_DIR or the current directory)"),
    )


def get_fdroiddir():
    if options is not None and getattr(options, 'fdroid_dir', None):
        return os.path.abspath(options.fdroid_dir)
    if os.getenv('FDROID_DIR'):
        return os.path.abspath(os.getenv('FDROID_DIR'))
    return os.getcwd()


def fill_config_defaults(thisconfig):
    """Fill in the config dict with defaults and the derived paths.

    Everything lives below "fdroiddir": the Artifact Store in repo/,
    the Metadata Store in metadata/ and by default the keystore in
    keystore/.  A relative keystore path is relative to fdroiddir.

    """
    for k, v in default_config.items():
        if k not in thisconfig:
            if isinstance(v, dict) or isinstance(v, list):
                thisconfig[k] = v.copy()
            else:
                thisconfig[k] = v

    if not thisconfig.get('fdroiddir'):
        thisconfig['fdroiddir'] = get_fdroiddir()
    fdroiddir = thisconfig['fdroiddir']

    keystore = os.path.expandvars(os.path.expanduser(thisconfig['keystore']))
    if not os.path.isabs(keystore):
        keystore = os.path.join(fdroiddir, keystore)
    thisconfig['keystore'] = os.path.normpath(keystore)

    thisconfig['repodir'] = os.path.join(fdroiddir, 'repo')
    thisconfig['metadatadir'] = os.path.join(fdroiddir, 'metadata')
    thisconfig['archivedir'] = os.path.join(fdroiddir, 'archive')
    thisconfig['landingdir'] = fdroiddir
    thisconfig['envfile'] = os.path.join(os.path.dirname(thisconfig['keystore']), ENV_FILE)
    thisconfig['statefile'] = os.path.join(fdroiddir, STATE_FILE)

    for cmd in ('keytool', 'jarsigner'):
        if cmd not in thisconfig and shutil.which(cmd):
            thisconfig[cmd] = shutil.which(cmd)


def config_type_check(path, data):
    if not isinstance(data, dict):
        msg = _('{path} is not "key: value" dict, but a {datatype}!')
        raise ConfigurationException(msg.format(path=path, datatype=type(data).__name__))


def parse_mirrors_config(mirrors):
    """Mirrors can be specified as a string, list of strings, or list of dictionary maps.

    A plain string is a webroot for rsync, unless it is a gs:// URL.
    """
    if isinstance(mirrors, str):
        mirrors = [mirrors]
    if not isinstance(mirrors, (list, tuple)):
        raise ConfigurationException(
            _('mirrors must be a string or a list, not a {datatype}!')
            .format(datatype=type(mirrors).__name__))

    ret = []
    for item in mirrors:
        if isinstance(item, str):
            if item.startswith('gs://'):
                d = {'type': 'gcs', 'bucket': item[len('gs://'):].strip('/')}
            else:
                d = {'type': 'webroot', 'url': item}
        elif isinstance(item, dict):
            d = dict(item)
        else:
            raise ConfigurationException(
                _('Invalid mirror entry: {entry}').format(entry=item))
        d.setdefault('type', 'webroot')
        if d['type'] not in MIRROR_TYPES:
            raise ConfigurationException(
                _('Unknown mirror type "{type}", use one of: {types}')
                .format(type=d['type'], types=', '.join(MIRROR_TYPES)))
        key = 'bucket' if d['type'] == 'gcs' else 'url'
        if not d.get(key):
            raise ConfigurationException(
                _('Mirror of type "{type}" needs "{key}" set!').format(type=d['type'], key=key))
        d.setdefault('name', '{type}:{target}'.format(type=d['type'], target=d[key]))
        ret.append(d)
    return ret


def _resolve_env_values(thisconfig):
    """Replace {env: NAME} values with the contents of that variable."""
    confignames_to_delete = set()
    for configname, dictvalue in thisconfig.items():
        if configname in ('apps', 'mirrors'):
            continue
        if not isinstance(dictvalue, dict):
            continue
        for k, v in dictvalue.items():
            if k == 'env':
                env = os.getenv(v)
                if env:
                    thisconfig[configname] = env
                else:
                    confignames_to_delete.add(configname)
                    logging.error(_('Environment variable {var} from {configname} is not set!')
                                  .format(var=v, configname=configname))
            else:
                confignames_to_delete.add(configname)
                logging.error(_('Unknown entry {key} in {configname}')
                              .format(key=k, configname=configname))
    for configname in confignames_to_delete:
        del thisconfig[configname]


def _apply_environment(thisconfig):
    for var, key in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            thisconfig[key] = value

    port = os.getenv('PORT')
    if port:
        try:
            thisconfig['serve_port'] = int(port)
        except ValueError as e:
            raise ConfigurationException(
                _('PORT must be a number, not "{port}"').format(port=port)) from e

    bucket = os.getenv('GCS_BUCKET')
    if bucket:
        bucket = bucket[len('gs://'):] if bucket.startswith('gs://') else bucket
        bucket = bucket.strip('/')
        if not any(m.get('bucket') == bucket for m in thisconfig['mirrors']):
            thisconfig['mirrors'] += parse_mirrors_config([{'type': 'gcs', 'bucket': bucket}])


def read_config():
    """Read the repository host config.

    The config is read from fdroidhost.yml in the repository root
    directory.  Every setting has a default, so running without any
    config file is a fully working local setup.  Secrets are best
    passed via environment variables, either the standard ones like
    FDROID_KEYSTORE_PASS or as {env: NAME} values in the file.

    """
    global config

    if config is not None:
        return config

    fdroiddir = get_fdroiddir()
    config_file = os.path.join(fdroiddir, CONFIG_FILE)
    config = {}

    if os.path.exists(config_file):
        logging.debug(_("Reading '{config_file}'").format(config_file=config_file))
        with open(config_file, encoding='utf-8') as fp:
            config = yaml.safe_load(fp)
        if not config:
            config = {}
        config_type_check(config_file, config)

        if any(k in config for k in ('keystorepass', 'keypass', 'gcs_secret_key')):
            st = os.stat(config_file)
            if st.st_mode & stat.S_IRWXG or st.st_mode & stat.S_IRWXO:
                logging.warning(_("unsafe permissions on '{config_file}' (should be 0600)!")
                                .format(config_file=config_file))

    config['fdroiddir'] = fdroiddir
    _resolve_env_values(config)
    fill_config_defaults(config)
    config['mirrors'] = parse_mirrors_config(config['mirrors'])
    _apply_environment(config)

    if not config['repo_url'].endswith('/repo'):
        raise ConfigurationException(_('repo_url needs to end with /repo'))
    if not isinstance(config['apps'], dict):
        raise ConfigurationException(_('apps must be a map of application ID to metadata'))

    return config


def get_config():
    """Get the initialized, singleton config instance."""
    if config is not None:
        return config
    return read_config()


def find_command(command):
    """Find the full path of a command, or None if it can't be found in the PATH."""
    def is_exe(fpath):
        return os.path.isfile(fpath) and os.access(fpath, os.X_OK)

    fpath, fname = os.path.split(command)
    if fpath:
        if is_exe(command):
            return command
    else:
        for path in os.environ.get("PATH", os.defpath).split(os.pathsep):
            path = path.strip('"')
            exe_file = os.path.join(path, command)
            if is_exe(exe_file):
                return exe_file

    return None


class PopenResult:
    def __init__(self, returncode=None, output=None):
        self.returncode = returncode
        self.output = output
        self.timed_out = False


def HostPopenBytes(commands, cwd=None, envs=None, timeout=None, stderr_to_stdout=True):
    """Run a command and capture its output as bytes.

    Parameters
    ----------
    commands
        command and argument list like in subprocess.Popen
    cwd
        optionally specifies a working directory
    envs
        a optional dictionary of environment variables and their values
    timeout
        seconds after which the command is killed, None waits forever
    stderr_to_stdout
        fold stderr into the output, otherwise it is only logged

    Returns
    -------
    A PopenResult.  When the timeout hit, returncode is None and
    timed_out is True.
    """
    process_env = dict(os.environ)
    if envs:
        process_env.update(envs)

    if cwd:
        cwd = os.path.normpath(cwd)
        logging.debug("Directory: %s" % cwd)
    logging.debug("> %s" % ' '.join(commands))

    stderr_param = subprocess.STDOUT if stderr_to_stdout else subprocess.PIPE
    result = PopenResult()
    try:
        p = subprocess.Popen(commands, cwd=cwd, shell=False, env=process_env,
                             stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                             stderr=stderr_param)
    except OSError as e:
        raise FDroidHostException("OSError while trying to execute "
                                  + ' '.join(commands) + ': ' + str(e)) from e

    try:
        output, errors = p.communicate(timeout=timeout)
        result.returncode = p.returncode
    except subprocess.TimeoutExpired:
        p.kill()
        output, errors = p.communicate()
        result.timed_out = True
        logging.error(_('Killed after {seconds} seconds: {command}')
                      .format(seconds=timeout, command=' '.join(commands)))

    if errors:
        logging.debug(errors.decode('utf-8', 'ignore').rstrip())
    result.output = output or b''
    if options and options.verbose and result.output:
        logging.debug(result.output.decode('utf-8', 'ignore').rstrip())
    return result


def HostPopen(commands, cwd=None, envs=None, timeout=None, stderr_to_stdout=True):
    """Run a command and capture its output as a str, see HostPopenBytes()."""
    result = HostPopenBytes(commands, cwd, envs, timeout, stderr_to_stdout)
    result.output = result.output.decode('utf-8', 'ignore')
    return result


def genpassword():
    """Generate a random password for when generating keys."""
    h = hashlib.sha256()
    h.update(os.urandom(16))  # salt
    h.update(socket.getfqdn().encode('utf-8'))
    passwd = base64.b64encode(h.digest()).strip()
    return passwd.decode('utf-8')


def sha256sum(filename):
    """Calculate the sha256 of the given file."""
    sha = hashlib.sha256()
    with open(filename, 'rb') as f:
        while True:
            t = f.read(16384)
            if len(t) == 0:
                break
            sha.update(t)
    return sha.hexdigest()


def get_cert_fingerprint(cert):
    """Fingerprint a DER encoded certificate the same way keytool does it, minus the colons."""
    return hashlib.sha256(cert).hexdigest().upper()


def format_fingerprint(fingerprint):
    """Split a hex fingerprint into space separated byte pairs for humans."""
    fingerprint = re.sub(r'[^0-9A-Fa-f]', '', fingerprint).upper()
    return ' '.join(fingerprint[i:i + 2] for i in range(0, len(fingerprint), 2))


def write_secret_file(path, content):
    """Write content to path, readable only by the owner.

    The file is written next to the target and then renamed over it,
    so the secret is never readable with looser permissions.
    """
    dirname = os.path.dirname(os.path.abspath(path))
    os.makedirs(dirname, mode=0o700, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dirname, prefix='.tmp-')
    try:
        with os.fdopen(fd, 'w') as fp:
            fp.write(content)
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def is_valid_package_name(name):
    """Check whether name is a valid fdroid package name."""
    return VALID_APPLICATION_ID_REGEX.match(name) is not None


def is_index_file(relpath):
    """Whether relpath, relative to a repo section, finalizes the repo."""
    return os.path.dirname(relpath) in ('', '.') and os.path.basename(relpath) in INDEX_FILES


def get_apks(repodir):
    """Return the sorted paths of all APKs in the Artifact Store."""
    return sorted(glob.glob(os.path.join(repodir, '*.apk')))


def _replace_file(srcpath, dstpath):
    fd, tmp = tempfile.mkstemp(dir=os.path.dirname(dstpath), prefix='.tmp-')
    os.close(fd)
    try:
        shutil.copy2(srcpath, tmp)
        os.replace(tmp, dstpath)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def update_file(srcpath, dstpath):
    """Atomically copy srcpath to dstpath unless it already has the same contents.

    Returns whether dstpath was changed.
    """
    if os.path.isfile(dstpath) and filecmp.cmp(srcpath, dstpath, shallow=False):
        return False
    os.makedirs(os.path.dirname(dstpath), exist_ok=True)
    _replace_file(srcpath, dstpath)
    return True


def list_tree(path):
    files = set()
    dirs = set()
    for root, dirnames, filenames in os.walk(path):
        for name in dirnames:
            dirs.add(os.path.relpath(os.path.join(root, name), path))
        for name in filenames:
            files.add(os.path.relpath(os.path.join(root, name), path))
    return files, dirs


def sync_tree(src, dst, delete=True, protect=None):
    """Reconcile dst so it is an exact copy of src.

    Upload the packages and other files first and the index files last,
    then delete anything that is no longer in src.  That keeps the repo
    functional while this is running: a reader sees either the old or
    the new index, and every package an index references is present.
    Each file is swapped in with os.replace(), so no reader ever sees a
    half-written file.

    Parameters
    ----------
    protect
        optional callable taking a path relative to dst, matching
        files are never deleted

    Returns
    -------
    A tuple of the lists of changed and deleted paths, relative to dst.
    """
    src_files, src_dirs = list_tree(src)
    index_files = sorted(f for f in src_files if is_index_file(f))
    other_files = sorted(src_files.difference(index_files))

    os.makedirs(dst, exist_ok=True)
    changed = []
    for relpath in other_files + index_files:
        srcpath = os.path.join(src, relpath)
        if update_file(srcpath, os.path.join(dst, relpath)):
            changed.append(relpath)

    deleted = []
    if delete:
        for root, dirnames, filenames in os.walk(dst, topdown=False):
            for name in filenames:
                path = os.path.join(root, name)
                relpath = os.path.relpath(path, dst)
                if relpath not in src_files and not (protect and protect(relpath)):
                    logging.debug(_('deleting stale {path}').format(path=path))
                    os.remove(path)
                    deleted.append(relpath)
            for name in dirnames:
                path = os.path.join(root, name)
                relpath = os.path.relpath(path, dst)
                if relpath not in src_dirs and os.path.isdir(path) and not os.listdir(path):
                    os.rmdir(path)
    return changed, deleted
