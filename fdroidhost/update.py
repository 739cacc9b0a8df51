#!/usr/bin/env python3
#
# update.py - part of the fdroidhost repository tools
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
import sys
from argparse import ArgumentParser

from . import _
from . import common
from . import index
from .exception import IndexBuildError

config = None


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help=_("Rebuild the index even if no APK, metadata or config changed"),
    )
    options = common.parse_args(parser)
    config = common.read_config()

    if not options.force and not index.needs_build(config):
        logging.info(_('Repository index is up to date, nothing to do'))
        sys.exit(0)

    try:
        repoindex = index.build_index(config)
    except IndexBuildError as e:
        logging.error(str(e))
        sys.exit(1)

    print(_('Repository updated: {count} APK(s) in the index').format(count=repoindex.artifact_count))


if __name__ == "__main__":
    main()
