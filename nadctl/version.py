#!/usr/bin/env python3
"""version information"""

__VERSION__ = "1.3.0"
