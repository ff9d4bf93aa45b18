#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK

"""Set up the data disk: ext4 filesystem, UUID fstab entry, mounted.

    sudo ./setup_data_disk.py [--dry-run] [--force]
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from disk_provision.cli import main


if __name__ == "__main__":
    sys.exit(main())
