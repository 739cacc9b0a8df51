#!/usr/bin/env python3
#
# serve.py - part of the fdroidhost repository tools
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
import mimetypes
import os
import posixpath
import sys
from argparse import ArgumentParser
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlsplit

from . import _
from . import common
from . import index

config = None

HEALTH_PATH = '/healthz'
READY_PATH = '/readyz'

CACHE_NO_CACHE = 'no-cache'
CACHE_PACKAGE = 'public, max-age=86400'

mimetypes.add_type('application/vnd.android.package-archive', '.apk')
mimetypes.add_type('application/java-archive', '.jar')


class RepoRequestHandler(SimpleHTTPRequestHandler):
    """Serve the repo and the landing page, and nothing else.

    Only paths below one of "serve_prefixes" map into repo/, plus the
    landing page at the root.  Everything else in fdroiddir, like the
    keystore and its .env, is a 404.
    """

    server_version = 'fdroidhost'
    sys_version = ''

    def __init__(self, *args, **kwargs):
        self.cache_control = None
        super().__init__(*args, **kwargs)

    @property
    def hostconfig(self):
        return self.server.hostconfig

    def map_path(self, path):
        """Return the file a URL path maps to, or None if it is not served."""
        path = unquote(urlsplit(path).path)
        if path in ('/', '/index.html'):
            self.cache_control = CACHE_NO_CACHE
            return os.path.join(self.hostconfig['landingdir'], 'index.html')
        if path == '/index.png':
            self.cache_control = CACHE_NO_CACHE
            return os.path.join(self.hostconfig['landingdir'], 'index.png')

        for prefix in self.hostconfig['serve_prefixes']:
            prefix = '/' + prefix.strip('/') + '/'
            if not path.startswith(prefix):
                continue
            relpath = posixpath.normpath(path[len(prefix):])
            parts = [p for p in relpath.split('/') if p and p != '.']
            if any(p == '..' or p.startswith('.') for p in parts):
                return None
            if parts and common.is_index_file('/'.join(parts)):
                self.cache_control = CACHE_NO_CACHE
            else:
                self.cache_control = CACHE_PACKAGE
            return os.path.join(self.hostconfig['repodir'], *parts)
        return None

    def translate_path(self, path):
        mapped = self.map_path(path)
        return mapped if mapped is not None else ''

    def list_directory(self, path):
        self.send_error(HTTPStatus.NOT_FOUND, _('File not found'))
        return None

    def send_probe(self, status, body):
        data = (body + '\n').encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'text/plain; charset=utf-8')
        self.send_header('Content-Length', str(len(data)))
        self.cache_control = CACHE_NO_CACHE
        self.end_headers()
        return data

    def handle_probe(self):
        """Answer health and readiness probes, returning None for other paths."""
        path = urlsplit(self.path).path
        if path == HEALTH_PATH:
            if os.path.isdir(self.hostconfig['fdroiddir']):
                return self.send_probe(HTTPStatus.OK, 'ok')
            return self.send_probe(HTTPStatus.SERVICE_UNAVAILABLE, 'no static root')
        if path == READY_PATH:
            if os.path.isfile(os.path.join(self.hostconfig['repodir'], index.SIGNED_INDEX)):
                return self.send_probe(HTTPStatus.OK, 'ready')
            return self.send_probe(HTTPStatus.SERVICE_UNAVAILABLE, 'no signed index yet')
        return None

    def do_GET(self):
        data = self.handle_probe()
        if data is not None:
            self.wfile.write(data)
            return
        if self.map_path(self.path) is None:
            self.send_error(HTTPStatus.NOT_FOUND, _('File not found'))
            return
        super().do_GET()

    def do_HEAD(self):
        if self.handle_probe() is not None:
            return
        if self.map_path(self.path) is None:
            self.send_error(HTTPStatus.NOT_FOUND, _('File not found'))
            return
        super().do_HEAD()

    def end_headers(self):
        self.send_header('X-Content-Type-Options', 'nosniff')
        if self.cache_control:
            self.send_header('Cache-Control', self.cache_control)
        super().end_headers()

    def log_message(self, format, *args):
        logging.info('%s - %s' % (self.address_string(), format % args))


class RepoHTTPServer(ThreadingHTTPServer):
    def __init__(self, server_address, hostconfig):
        self.hostconfig = hostconfig
        super().__init__(server_address, RepoRequestHandler)


def make_server(thisconfig=None, host=None, port=None):
    """Create the server, port 0 picks a free port."""
    if thisconfig is None:
        thisconfig = common.get_config()
    if host is None:
        host = thisconfig['serve_host']
    if port is None:
        port = thisconfig['serve_port']
    os.makedirs(thisconfig['repodir'], exist_ok=True)
    return RepoHTTPServer((host, port), thisconfig)


def main():
    global config

    parser = ArgumentParser()
    common.setup_global_opts(parser)
    parser.add_argument("--host", default=None,
                        help=_("Address to listen on (default: serve_host from fdroidhost.yml)"))
    parser.add_argument("--port", type=int, default=None,
                        help=_("Port to listen on (default: $PORT, serve_port or 8080)"))
    parser.add_argument("--bootstrap", action="store_true", default=False,
                        help=_("Create the signing key, landing page and first index before serving"))
    options = common.parse_args(parser)
    config = common.read_config()

    if options.bootstrap:
        from . import publish

        result = publish.bootstrap(config)
        if result.error:
            logging.warning(_('Serving without a fresh index: {error}').format(error=result.error))

    httpd = make_server(config, options.host, options.port)
    host, port = httpd.server_address[:2]
    logging.info(_('Serving {path} on http://{host}:{port}/')
                 .format(path=config['fdroiddir'], host=host, port=port))
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logging.info(_('Shutting down...'))
    finally:
        httpd.server_close()
    sys.exit(0)


if __name__ == "__main__":
    main()
