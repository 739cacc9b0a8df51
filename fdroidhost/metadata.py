#!/usr/bin/env python3
#
# metadata.py - part of the fdroidhost repository tools
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
from pathlib import Path

import ruamel.yaml

from . import _
from . import common
from .exception import MetaDataException

# the order fdroiddata and `fdroid rewritemeta` use
yaml_app_field_order = [
    'Disabled',
    'AntiFeatures',
    'Categories',
    'License',
    'AuthorName',
    'AuthorEmail',
    'AuthorWebSite',
    'WebSite',
    'SourceCode',
    'IssueTracker',
    'Translation',
    'Changelog',
    'Donate',
    'Liberapay',
    'OpenCollective',
    'Bitcoin',
    'Litecoin',
    '\n',
    'Name',
    'AutoName',
    'Summary',
    'Description',
    '\n',
    'RequiresRoot',
    '\n',
    'RepoType',
    'Repo',
    'Binaries',
    '\n',
    'Builds',
    '\n',
    'AllowedAPKSigningKeys',
    '\n',
    'MaintainerNotes',
    '\n',
    'ArchivePolicy',
    'AutoUpdateMode',
    'UpdateCheckMode',
    'UpdateCheckIgnore',
    'VercodeOperation',
    'UpdateCheckName',
    'UpdateCheckData',
    'CurrentVersion',
    'CurrentVersionCode',
    '\n',
    'NoSourceSince',
]

yaml_app_fields = [x for x in yaml_app_field_order if x != '\n']

# binary-only repos have nothing to build and nothing to check
default_fields = {
    'Builds': [],
    'AutoUpdateMode': 'None',
    'UpdateCheckMode': 'None',
}


def _format_multiline(value):
    """Values with newlines in them are saved as YAML literal strings."""
    if '\n' in value:
        return ruamel.yaml.scalarstring.preserve_literal(str(value))
    return str(value)


def _app_to_yaml(fields):
    cm = ruamel.yaml.comments.CommentedMap()
    insert_newline = False
    for field in yaml_app_field_order:
        if field == '\n':
            # next iteration will need to insert a newline
            insert_newline = True
            continue
        if field not in fields:
            continue
        value = fields[field]
        if field == 'Categories':
            cm[field] = sorted(value, key=str.lower)
        elif field == 'Builds':
            cm[field] = ruamel.yaml.comments.CommentedSeq(value or [])
        elif isinstance(value, str):
            cm[field] = _format_multiline(value)
        else:
            cm[field] = value

        if insert_newline and len(cm) > 1:
            # inserting empty lines is not supported so we add a
            # bogus comment and over-write its value
            cm.yaml_set_comment_before_after_key(field, 'bogus')
            cm.ca.items[field][1][-1].value = '\n'
        insert_newline = False
    return cm


def write_app_metadata(appid, fields, metadatadir):
    """Write metadata/<appid>.yml for a binary-only app.

    Parameters
    ----------
    appid
      the Application ID, used as the file name
    fields
      dict of fdroiddata metadata fields, e.g. License, Summary

    Returns
    -------
    The path of the written file.
    """
    if not common.is_valid_package_name(appid):
        raise MetaDataException(_('"{appid}" is not a valid Application ID').format(appid=appid))
    if not isinstance(fields, dict):
        raise MetaDataException(_('Metadata for {appid} must be a map of fields')
                                .format(appid=appid))
    unknown = sorted(set(fields) - set(yaml_app_fields))
    if unknown:
        raise MetaDataException(_('Unrecognised app field in {appid}: {fields}')
                                .format(appid=appid, fields=', '.join(unknown)))

    data = dict(default_fields)
    data.update(fields)

    os.makedirs(metadatadir, exist_ok=True)
    metadatapath = Path(metadatadir) / (appid + '.yml')
    yaml = ruamel.yaml.YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    with metadatapath.open('w', encoding='utf-8') as mf:
        yaml.dump(_app_to_yaml(data), stream=mf)
    logging.debug(_('Wrote {path}').format(path=metadatapath))
    return str(metadatapath)


def write_configured_metadata(thisconfig):
    """Write the metadata of every app listed under "apps" in fdroidhost.yml."""
    written = []
    for appid, fields in sorted(thisconfig.get('apps', {}).items()):
        written.append(write_app_metadata(appid, fields or {}, thisconfig['metadatadir']))
    return written


def remove_app_metadata(appid, metadatadir):
    """Remove metadata/<appid>.yml, if any."""
    removed = []
    metadatapath = os.path.join(metadatadir, appid + '.yml')
    if os.path.isfile(metadatapath):
        os.remove(metadatapath)
        removed.append(metadatapath)
    return removed
