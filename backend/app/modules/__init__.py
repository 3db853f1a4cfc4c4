"""Application modules.

- transcoding: HLS transcoding pipeline, manifests and delivery cache
"""
