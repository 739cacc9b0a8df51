#!/usr/bin/env python3
#
# fdroidhost/__main__.py - part of the fdroidhost repository tools
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

import importlib.metadata
import logging
import os
import sys
from argparse import ArgumentError
from collections import OrderedDict

import git

from fdroidhost import _
from fdroidhost.exception import FDroidHostException, MetaDataException


COMMANDS = OrderedDict([
    ("init", _("Set up the repo: signing key, landing page and first index")),
    ("add", _("Copy an APK into the repo")),
    ("update", _("Rebuild the signed repo index")),
    ("fingerprint", _("Show the fingerprint of the repo signing key")),
    ("list", _("List the APKs in the repo")),
    ("remove", _("Remove an app's APKs and metadata from the repo")),
    ("publish", _("Build the index if needed and push the repo to all mirrors")),
    ("deploy", _("Push the repo to all mirrors")),
    ("serve", _("Serve the repo over HTTP")),
])


def print_help():
    print(_("usage: ") + _("fdroidhost [<command>] [-h|--help|--version|<args>]"))
    print("")
    print(_("Valid commands are:"))
    for cmd, summary in COMMANDS.items():
        print("   " + cmd + ' ' * (15 - len(cmd)) + summary)
    print("")


def print_version():
    try:
        print(importlib.metadata.version("fdroidhost"))
        return 0
    except importlib.metadata.PackageNotFoundError:
        pass
    try:
        print(
            git.repo.Repo(
                os.path.dirname(os.path.dirname(__file__))
            ).git.describe(always=True, tags=True)
        )
        return 0
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        print(_('No version information could be found.'))
        return 1


def main():
    if len(sys.argv) <= 1:
        print_help()
        sys.exit(0)

    command = sys.argv[1]
    if command not in COMMANDS:
        if command in ('-h', '--help'):
            print_help()
            sys.exit(0)
        elif command == '--version':
            sys.exit(print_version())
        else:
            print(_("Command '{command}' not recognised.\n").format(command=command))
            print_help()
            sys.exit(1)

    verbose = any(s in sys.argv for s in ['-v', '--verbose'])
    quiet = any(s in sys.argv for s in ['-q', '--quiet'])

    # Helpful to differentiate warnings from errors even when on quiet
    logformat = '%(asctime)s %(levelname)s: %(message)s'
    loglevel = logging.INFO
    if verbose:
        loglevel = logging.DEBUG
    elif quiet:
        loglevel = logging.WARN

    logging.basicConfig(format=logformat, level=loglevel)

    if verbose and quiet:
        logging.critical(_("Conflicting arguments: '--verbose' and '--quiet' "
                           "can not be specified at the same time."))
        sys.exit(1)

    # Trick argparse into displaying the right usage when --help is used.
    sys.argv[0] += ' ' + command

    del sys.argv[1]
    # list is named list_subcommand internally b/c list is a Python builtin
    command = 'list_subcommand' if command == 'list' else command
    mod = __import__('fdroidhost.' + command, None, None, [command])

    try:
        mod.main()
    # These are ours, contain a proper message and are "expected"
    except (FDroidHostException, MetaDataException) as e:
        if verbose:
            raise
        else:
            logging.critical(str(e))
        sys.exit(1)
    except ArgumentError as e:
        logging.critical(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        print('')
        sys.exit(1)
    # These should only be unexpected crashes due to bugs in the code
    # str(e) often doesn't contain a reason, so just show the backtrace
    except Exception as e:
        logging.critical(_("Unknown exception found!"))
        raise e
    sys.exit(0)


if __name__ == "__main__":
    main()
