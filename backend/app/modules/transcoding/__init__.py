"""Transcoding orchestration and delivery cache.

Encodes uploaded videos into HLS quality renditions, either locally with
FFmpeg or with AWS MediaConvert, tracks the video status state machine and
serves cached master and quality playlists.
"""
