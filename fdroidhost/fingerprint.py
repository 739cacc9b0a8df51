#!/usr/bin/env python3
#
# fingerprint.py - part of the fdroidhost repository tools
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

from . import _
from . import common
from . import index
from . import keystore
from .exception import VerificationException

config = None


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument(
        "--verify",
        action="store_true",
        default=False,
        help=_("Also check that the published index is signed by this key"),
    )
    options = common.parse_args(parser)
    config = common.read_config()

    identity = keystore.get_signing_identity(config)
    if not identity.exists():
        logging.error(_('Keystore not found at {path}').format(path=identity.keystore))
        sys.exit(1)
    fingerprint = keystore.get_fingerprint(identity, config)
    print(_('Repository Fingerprint:'))
    print('SHA256: ' + common.format_fingerprint(fingerprint))

    if options.verify:
        jar = os.path.join(config['repodir'], index.SIGNED_INDEX)
        if not os.path.isfile(jar):
            logging.error(_('No signed index found at {path}').format(path=jar))
            sys.exit(1)
        identity.fingerprint = fingerprint
        try:
            index.verify_index_signature(jar, identity, config)
        except VerificationException as e:
            logging.error(str(e))
            sys.exit(1)
        print(_('Index signature verified: {path}').format(path=jar))


if __name__ == "__main__":
    main()
