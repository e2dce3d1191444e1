"""HLS transcoder: turns uploaded videos into adaptive-bitrate HLS rendition sets."""

__version__ = "0.1.0"
