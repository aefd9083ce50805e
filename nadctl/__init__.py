#!/usr/bin/env python3
"""nadctl: control NAD audio receivers over the network"""

from nadctl.version import __VERSION__

__all__ = ["__VERSION__"]
