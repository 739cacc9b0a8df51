#!/usr/bin/env python3
#
# add.py - part of the fdroidhost repository tools
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
import sys
from argparse import ArgumentParser

from . import _
from . import common
from .exception import FDroidHostException

config = None
options = None


def find_built_apk(build_dir, build_type='release'):
    """Find the APK a Gradle build produced in <build_dir>/<build_type>.

    The universal APK is preferred since it runs everywhere, then the
    arm64-v8a split, then whatever APK is there.
    """
    apk_dir = os.path.join(build_dir, build_type)
    for name in ('app-universal-{}.apk', 'app-arm64-v8a-{}.apk'):
        path = os.path.join(apk_dir, name.format(build_type))
        if os.path.isfile(path):
            return path
    found = sorted(glob.glob(os.path.join(apk_dir, '**', '*.apk'), recursive=True))
    if found:
        return found[0]
    return None


def get_dest_name(apk_path, appid=None, version_name=None):
    if not appid:
        return os.path.basename(apk_path)
    if not common.is_valid_package_name(appid):
        raise FDroidHostException(_('"{appid}" is not a valid Application ID').format(appid=appid))
    if version_name:
        return '{appid}_{version}.apk'.format(appid=appid, version=version_name)
    return appid + '.apk'


def add_apk(apk_path, repodir, appid=None, version_name=None):
    """Copy an APK into the Artifact Store, return its new path.

    The index is not touched, that needs a following update.
    """
    if not os.path.isfile(apk_path):
        raise FDroidHostException(_('APK file not found: {path}').format(path=apk_path))
    if not apk_path.endswith('.apk'):
        logging.warning(_('{path} does not end in .apk, fdroid will ignore it').format(path=apk_path))
    dest = os.path.join(repodir, get_dest_name(apk_path, appid, version_name))
    os.makedirs(repodir, exist_ok=True)
    logging.info(_('Adding {src} as {dest}').format(src=apk_path, dest=dest))
    common.update_file(apk_path, dest)
    return dest


def main():
    global config, options

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument("apk", nargs='?', help=_("Path to the APK to add"))
    parser.add_argument("--appid", default=None,
                        help=_("Store the APK as <appid>.apk, or <appid>_<version-name>.apk"))
    parser.add_argument("--version-name", default=None,
                        help=_("Version added to the file name, requires --appid"))
    parser.add_argument("--build-dir", default=None,
                        help=_("Gradle APK output dir to pick the APK from, e.g. app/build/outputs/apk"))
    parser.add_argument("--build-type", default='release',
                        help=_("Build type subdirectory of --build-dir"))
    options = common.parse_args(parser)
    config = common.read_config()

    if options.version_name and not options.appid:
        parser.error(_('--version-name requires --appid'))
    if options.build_dir:
        if options.apk:
            parser.error(_('Give either an APK or --build-dir, not both'))
        apk = find_built_apk(options.build_dir, options.build_type)
        if apk is None:
            logging.error(_('No APK found in {path}').format(
                path=os.path.join(options.build_dir, options.build_type)))
            sys.exit(1)
        logging.info(_('Found APK: {path}').format(path=apk))
    elif options.apk:
        apk = options.apk
    else:
        parser.error(_('Give the APK to add, or --build-dir'))

    dest = add_apk(apk, config['repodir'], options.appid, options.version_name)
    print(_('Added {name}. Run "fdroidhost update" to refresh the repository index.')
          .format(name=os.path.basename(dest)))


if __name__ == "__main__":
    main()
