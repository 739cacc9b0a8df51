#!/usr/bin/env python3
#
# init.py - part of the fdroidhost repository tools
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


import logging
import os
import sys
from argparse import ArgumentParser

import ruamel.yaml

from . import _
from . import common
from . import keystore
from . import publish

config = None
options = None

CONFIG_HEADER = 'fdroidhost settings, see examples/fdroidhost.yml for all of them'


def write_to_config(fdroiddir, key, value):
    """Set a key in fdroidhost.yml, keeping the comments and order of the rest."""
    os.makedirs(fdroiddir, exist_ok=True)
    config_file = os.path.join(fdroiddir, common.CONFIG_FILE)
    yaml = ruamel.yaml.YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    data = None
    if os.path.exists(config_file):
        with open(config_file, encoding='utf-8') as fp:
            data = yaml.load(fp)
    if data is None:
        logging.info(_('Creating {path}').format(path=config_file))
        data = ruamel.yaml.comments.CommentedMap()
        data.yaml_set_start_comment(CONFIG_HEADER)
    data[key] = value
    with open(config_file, 'w', encoding='utf-8') as fp:
        yaml.dump(data, fp)


def main():
    global config, options

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument("--repo-url", default=None,
                        help=_("Public URL of the repo, ending in /repo"))
    parser.add_argument("--repo-name", default=None,
                        help=_("Name of the repo shown in the F-Droid client"))
    parser.add_argument("-d", "--distinguished-name", default=None,
                        help=_("X.509 'Distinguished Name' used when generating keys"))
    parser.add_argument("--repo-keyalias", default=None,
                        help=_("Alias of the repo signing key in the keystore"))
    options = common.parse_args(parser)

    fdroiddir = common.get_fdroiddir()
    settings = {
        'repo_url': options.repo_url,
        'repo_name': options.repo_name,
        'keydname': options.distinguished_name,
        'repo_keyalias': options.repo_keyalias,
    }
    for key, value in settings.items():
        if value is not None:
            write_to_config(fdroiddir, key, value)

    # now that fdroidhost.yml is in place, read configuration...
    common.config = None
    config = common.read_config()

    if (options.distinguished_name or options.repo_keyalias) \
       and os.path.exists(config['keystore']):
        logging.warning(_('Using existing keystore "{path}", the key is not regenerated')
                        .format(path=config['keystore']))

    result = publish.bootstrap(config)
    identity = keystore.get_signing_identity(config)
    fingerprint = keystore.get_fingerprint(identity, config)

    msg = '\n'
    msg += _('Built repo based in "{path}" with this config:').format(path=fdroiddir)
    msg += '\n\n  ' + _('Repo URL:\t\t\t') + config['repo_url']
    msg += '\n  ' + _('Keystore for signing key:\t') + config['keystore']
    msg += '\n  ' + _('Alias for key in store:\t') + config['repo_keyalias']
    msg += '\n  SHA256:\t\t\t' + common.format_fingerprint(fingerprint)
    msg += '\n\n'
    msg += _('To add APKs, run "fdroidhost add <apk>" then "fdroidhost update".')
    logging.info(msg)

    if result.error:
        sys.exit(1)


if __name__ == "__main__":
    main()
