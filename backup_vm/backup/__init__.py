"""Backup strategies (image / tar) and the job runner."""
