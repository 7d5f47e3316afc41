"""Application modules.

- video: Video asset catalog
- transcoding: HLS transcoding pipeline and retrieval endpoint
- job: Retry and backoff primitives for background jobs
"""
