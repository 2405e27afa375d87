"""remote-luks: remote_luks/__main__.py.

Back up your data into an encrypted container on a server you don't trust.
A directory from the server is mounted using sshfs, a LUKS container in that
directory holds an encrypted file system, and your data is synchronized into
it with rsync. The administrators of the server never see the plain data.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
