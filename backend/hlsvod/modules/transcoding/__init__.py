"""Transcoding module for adaptive-bitrate HLS output.

Probes an uploaded video, picks the rungs of the resolution ladder worth
producing, encodes each one through an audio fallback cascade, writes the
master playlist and commits the video record's terminal state.
"""
