"""Hybrid CPU/HD fan zone controller for Supermicro X9/X10/X11 boards"""

__version__ = "0.1.0"
