#!/usr/bin/env python3
#
# publish.py - part of the fdroidhost repository tools
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

"""Run one bootstrap/build/publish cycle.

A cycle goes through these states:

UNINITIALIZED -> IDENTITY_READY -> INDEX_READY -> PUBLISHED | DEGRADED

A failed index build leaves the cycle at IDENTITY_READY, nothing is
pushed to the mirrors and they keep serving the last good index.
DEGRADED means at least one mirror could not be updated, the next
cycle starts over and retries all of them.
"""

import enum
import logging
import os
import sys
from argparse import ArgumentParser

from . import _
from . import common
from . import deploy
from . import index
from . import keystore
from . import website
from .exception import IndexBuildError

config = None

EXIT_PUBLISHED = 0
EXIT_BUILD_FAILED = 1
EXIT_DEGRADED = 2


class State(enum.Enum):
    UNINITIALIZED = 'uninitialized'
    IDENTITY_READY = 'identity_ready'
    INDEX_READY = 'index_ready'
    PUBLISHED = 'published'
    DEGRADED = 'degraded'


class CycleResult:
    def __init__(self, state, index=None, mirror_results=None, error=None):
        self.state = state
        self.index = index
        self.mirror_results = mirror_results or []
        self.error = error

    @property
    def failed_mirrors(self):
        return [r for r in self.mirror_results if not r.ok]

    def exit_code(self):
        if self.state == State.PUBLISHED:
            return EXIT_PUBLISHED
        if self.state == State.DEGRADED:
            return EXIT_DEGRADED
        return EXIT_BUILD_FAILED

    def __repr__(self):
        return '<CycleResult {state}>'.format(state=self.state.name)


class PublishCycle:
    def __init__(self, thisconfig=None, builder=None, mirrors=None):
        self.config = thisconfig if thisconfig is not None else common.get_config()
        self.builder = builder
        self.mirrors = mirrors if mirrors is not None else deploy.get_mirrors(self.config)
        self.state = State.UNINITIALIZED
        self.identity = None

    def ensure_identity(self):
        """IdentityCreationError is fatal, so it is not caught here."""
        self.identity = keystore.ensure_signing_identity(self.config)
        self.state = State.IDENTITY_READY
        return self.identity

    def build(self, force=False):
        """Build the index when inputs changed, returning None if the build failed."""
        if not force and not index.needs_build(self.config):
            logging.info(_('Repository index is up to date'))
            current = index.read_repository_index(self.config['repodir'])
        else:
            current = index.build_index(self.config, self.identity, self.builder)
        self.state = State.INDEX_READY
        return current

    def run(self, force=False):
        """Run the whole cycle and return a CycleResult."""
        self.state = State.UNINITIALIZED
        self.ensure_identity()
        index.write_tool_config(self.config)

        try:
            current = self.build(force)
        except IndexBuildError as e:
            logging.error(_('Index build failed, still serving the previous index: {error}')
                          .format(error=e))
            return CycleResult(self.state, error=e)

        results = deploy.sync_mirrors(self.mirrors, self.config)
        if all(r.ok for r in results):
            self.state = State.PUBLISHED
        else:
            self.state = State.DEGRADED
            logging.warning(_('Published in degraded state, failed mirrors: {names}')
                            .format(names=', '.join(r.name for r in results if not r.ok)))
        return CycleResult(self.state, current, results)


def bootstrap(thisconfig=None, builder=None):
    """Prepare a repo for serving, the steps a fresh container runs on start.

    The signing key is created only when absent.  The tool config and
    the landing page are regenerated every time, they are a pure
    function of fdroidhost.yml and the fingerprint.  The index is only
    built when there is none yet.

    Returns
    -------
    A CycleResult that is INDEX_READY, or IDENTITY_READY when the
    first build failed.
    """
    if thisconfig is None:
        thisconfig = common.get_config()
    os.makedirs(thisconfig['repodir'], exist_ok=True)
    os.makedirs(thisconfig['metadatadir'], exist_ok=True)

    identity = keystore.ensure_signing_identity(thisconfig)
    index.write_tool_config(thisconfig)
    fingerprint = identity.fingerprint or keystore.get_fingerprint(identity, thisconfig)
    website.make_website(thisconfig, fingerprint)

    current = index.read_repository_index(thisconfig['repodir'])
    if current is None:
        logging.info(_('No repository index yet, building the first one'))
        try:
            current = index.build_index(thisconfig, identity, builder)
        except IndexBuildError as e:
            logging.error(_('Initial index build failed: {error}').format(error=e))
            return CycleResult(State.IDENTITY_READY, error=e)
    return CycleResult(State.INDEX_READY, current)


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help=_("Rebuild the index even if nothing changed"),
    )
    options = common.parse_args(parser)
    config = common.read_config()

    result = PublishCycle(config).run(force=options.force)
    for r in result.mirror_results:
        print('{status:6} {name}'.format(status='ok' if r.ok else 'FAILED', name=r.name))
    logging.info(_('Publish cycle finished: {state}').format(state=result.state.name))
    sys.exit(result.exit_code())


if __name__ == "__main__":
    main()
