"""lvsnap-backup: lvsnap_backup/__init__.py."""

__version__ = "0.3.0"
