"""Application modules.

- transcoding: probe, resolution ladder, encode cascade, master playlist and
  the video record lifecycle
"""
