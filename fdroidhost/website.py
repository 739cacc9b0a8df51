#!/usr/bin/env python3
#
# website.py - part of the fdroidhost repository tools
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

import html
import logging
import os
import re

import qrcode

from . import _
from . import common

# do not change this string, it marks files that may be overwritten
AUTOGENERATE_COMMENT = "auto-generated - fdroidhost overwrites this file"

TEMPLATE = """<!-- {autogenerate_comment} -->
<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta content="width=device-width, initial-scale=1.0" name="viewport">
    <title>{name}</title>
    <meta content="{name}" property="og:site_name">
    <meta content="{description}" property="og:description">
    <meta content="index,nofollow" name="robots">
  </head>
  <body>
    <h2>{name}</h2>
    <div id="intro">
      <p>
        <a href="index.png" title="QR: {name}">
          <img alt="QR: {name}" src="index.png" width="200" style="float:right;margin-left:.5em;">
        </a>
        {description}
      </p>
      <p>
        To add this repository, install F-Droid, then scan the QR code
        or open this link on your Android device:
      </p>
      <p>
        <a href="{link_fingerprinted}"><code>{repo_url}</code></a>
      </p>
      <p>
        Or open F-Droid, go to Settings, Repositories, tap +, and enter
        the address <code>{repo_url}</code>
      </p>
      <p>
        To manually verify the fingerprint (SHA-256) of the repository
        signing key, here it is:
        <br>
        <code style="font-weight:bold;">{fingerprint}</code>
      </p>
    </div>
  </body>
</html>
"""


def get_fingerprinted_link(repo_url, fingerprint):
    """Return the fdroidrepos:// link that lets F-Droid add the repo and pin its key."""
    link = re.sub(r'^https?://', 'fdroidrepos://', repo_url)
    if not link.startswith('fdroidrepos://'):
        link = 'fdroidrepos://' + link
    return '{link}?fingerprint={fingerprint}'.format(
        link=link, fingerprint=fingerprint.replace(' ', '').replace(':', '').upper())


def make_website(thisconfig, fingerprint):
    """Write the landing page index.html and its QR code index.png.

    Both only depend on the config and the fingerprint, so rewriting
    them on every start produces the same files.
    """
    landingdir = thisconfig['landingdir']
    os.makedirs(landingdir, exist_ok=True)
    link_fingerprinted = get_fingerprinted_link(thisconfig['repo_url'], fingerprint)

    qrcode.make(link_fingerprinted).save(os.path.join(landingdir, 'index.png'))

    html_file = os.path.join(landingdir, 'index.html')
    if os.path.exists(html_file):
        with open(html_file, encoding='utf-8') as f:
            if AUTOGENERATE_COMMENT not in f.readline():
                logging.info(_('Not overwriting {path}, it was not generated by fdroidhost')
                             .format(path=html_file))
                return
    with open(html_file, 'w', encoding='utf-8') as f:
        f.write(TEMPLATE.format(
            autogenerate_comment=AUTOGENERATE_COMMENT,
            name=html.escape(thisconfig['repo_name']),
            description=html.escape(thisconfig['repo_description']),
            repo_url=html.escape(thisconfig['repo_url']),
            link_fingerprinted=html.escape(link_fingerprinted),
            fingerprint=common.format_fingerprint(fingerprint),
        ))
    logging.debug(_('Wrote landing page {path}').format(path=html_file))
