#!/usr/bin/env python3

import re
import subprocess
import sys

from setuptools import Command, setup


class VersionCheckCommand(Command):
    """Make sure git tag and version match before uploading."""

    user_options = []

    def initialize_options(self):
        """Abstract method that is required to be overwritten."""

    def finalize_options(self):
        """Abstract method that is required to be overwritten."""

    def run(self):
        version = self.distribution.get_version()
        version_git = (
            subprocess.check_output(['git', 'describe', '--tags', '--always'])
            .rstrip()
            .decode('utf-8')
        )
        if version != version_git:
            print(
                'ERROR: Release version mismatch! setup.py (%s) does not match git (%s)'
                % (version, version_git)
            )
            sys.exit(1)
        print('Upload using: twine upload --sign dist/fdroidhost-%s.tar.gz' % version)


def get_data_files():
    with open('MANIFEST.in') as fp:
        data = fp.read()
    return [
        ('share/doc/fdroidhost/examples', re.findall(r'include (examples/.*)', data)),
    ]


with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='fdroidhost',
    version='0.1.0',
    description='Host and publish a signed F-Droid APK repository',
    long_description=long_description,
    long_description_content_type='text/markdown',
    license='AGPL-3.0',
    packages=['fdroidhost'],
    entry_points={'console_scripts': ['fdroidhost=fdroidhost.__main__:main']},
    data_files=get_data_files(),
    python_requires='>=3.9',
    cmdclass={
        'versioncheck': VersionCheckCommand,
    },
    install_requires=[
        'GitPython',
        'Pillow',
        'apache-libcloud >= 0.14.1',
        'PyYAML',
        'qrcode',
        'ruamel.yaml >= 0.15, < 0.17.22',
    ],
    # fdroidserver provides the "fdroid" command that builds the index,
    # it is a separate tool and may come from the distro instead
    extras_require={
        'fdroidserver': ['fdroidserver'],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: GNU Affero General Public License v3 or later (AGPLv3+)',
        'Operating System :: POSIX',
        'Operating System :: Unix',
        'Topic :: Utilities',
    ],
)
