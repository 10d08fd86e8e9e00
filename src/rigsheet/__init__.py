"""Procedural sprite segmentation, rectangle compression and puppet-animation atlases."""

__version__ = "0.1.0"
