"""LAN Clipboard Sync - keeps clipboards in sync across machines on one network"""

__version__ = "1.0.0"
