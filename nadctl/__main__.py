#!/usr/bin/env python3
"""allow `python -m nadctl`"""

import sys

import nadctl.cli

if __name__ == "__main__":
    sys.exit(nadctl.cli.main())
