"""Deterministic ffmpeg-backed encoding stage."""
