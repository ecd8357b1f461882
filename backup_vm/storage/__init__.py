"""Block device, kpartx, mount and pipeline helpers."""
