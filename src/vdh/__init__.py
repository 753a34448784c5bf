"""
vdh - Video Downloader Helper.

A single-node download queue daemon:
- tasks/: task models, SQLite store, queue manager, startup recovery
- server/: Unix-socket control server and its text protocol
- downloader.py: yt-dlp collaborator
- cli/: `vdh` command line entrypoint
"""

__version__ = "2.0.0"
