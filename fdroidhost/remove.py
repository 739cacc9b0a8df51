#!/usr/bin/env python3
#
# remove.py - part of the fdroidhost repository tools
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


import glob
import logging
import os
from argparse import ArgumentParser

from . import _
from . import common
from . import index
from . import metadata

config = None


def find_app_apks(appid, repodir):
    """Find the APKs of one app.

    That is every APK the current index lists for it, whatever the
    file is called, plus <appid>.apk and <appid>_<anything>.apk which
    might not be indexed yet.
    """
    found = glob.glob(os.path.join(repodir, glob.escape(appid) + '.apk'))
    found += glob.glob(os.path.join(repodir, glob.escape(appid) + '_*.apk'))
    for name in index.indexed_apk_names(repodir, appid):
        path = os.path.join(repodir, name)
        if os.path.isfile(path):
            found.append(path)
    return sorted(set(found))


def remove_app(appid, thisconfig):
    """Delete the APKs and the metadata of an app, return the removed paths.

    The index still lists the app until the next update.
    """
    removed = []
    for path in find_app_apks(appid, thisconfig['repodir']):
        logging.info(_('Removing {path}').format(path=path))
        os.remove(path)
        removed.append(path)
    removed += metadata.remove_app_metadata(appid, thisconfig['metadatadir'])
    if not removed:
        logging.warning(_('Nothing found for {appid}').format(appid=appid))
    return removed


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument("appid", help=_("Application ID of the app to remove"))
    options = common.parse_args(parser)
    config = common.read_config()

    remove_app(options.appid, config)
    print(_('Package removed. Run "fdroidhost update" to refresh the repository index.'))


if __name__ == "__main__":
    main()
