#!/usr/bin/env python3
"""terminal user interface"""
