"""Transcoding module.

Turns an uploaded video into adaptive-bitrate HLS renditions: probe, plan
the ladder, encode each tier with FFmpeg, publish segments and playlists,
and settle the catalog record.
"""
