"""Stream LVM-backed VM disks and partitions to an rclone remote."""

from .__version__ import __version__

__all__ = ["__version__"]
