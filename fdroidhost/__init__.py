import gettext
import glob
import os
import sys


# support running straight from git and standard installs
rootpaths = [
    os.path.realpath(os.path.join(os.path.dirname(__file__), '..')),
    os.path.join(sys.prefix, 'share'),
]

localedir = None
for rootpath in rootpaths:
    if len(glob.glob(os.path.join(rootpath, 'locale', '*', 'LC_MESSAGES', 'fdroidhost.mo'))) > 0:
        localedir = os.path.join(rootpath, 'locale')
        break

gettext.bindtextdomain('fdroidhost', localedir)
gettext.textdomain('fdroidhost')
_ = gettext.gettext


from fdroidhost.exception import (FDroidHostException,
                                  IdentityCreationError,
                                  IndexBuildError,
                                  MirrorSyncError)  # NOQA: E402
FDroidHostException  # NOQA: B101
IdentityCreationError  # NOQA: B101
IndexBuildError  # NOQA: B101
MirrorSyncError  # NOQA: B101

from fdroidhost.keystore import ensure_signing_identity  # NOQA: E402
ensure_signing_identity  # NOQA: B101
from fdroidhost.index import build_index  # NOQA: E402
build_index  # NOQA: B101
from fdroidhost.deploy import sync_mirrors  # NOQA: E402
sync_mirrors  # NOQA: B101
from fdroidhost.publish import PublishCycle  # NOQA: E402
PublishCycle  # NOQA: B101
