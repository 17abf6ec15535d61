"""Composition of pull-test videos: placement geometry, overlays, plans and FFmpeg export."""
