"""
Reels converter: batch conversion of still images into vertical 9:16 clips
for Reels, Shorts and TikTok.

Exposes the conversion engine, a Flask API and a command-line entry point.
"""
