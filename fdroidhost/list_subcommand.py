#!/usr/bin/env python3
#
# list_subcommand.py - part of the fdroidhost repository tools
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


import os
from argparse import ArgumentParser

from . import _
from . import common

config = None


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    common.parse_args(parser)
    config = common.read_config()

    apks = common.get_apks(config['repodir'])
    print(_('APKs in repository ({path}):').format(path=config['repodir']))
    if not apks:
        print('  ' + _('No APKs found'))
    for apk in apks:
        print(os.path.basename(apk))


if __name__ == "__main__":
    main()
