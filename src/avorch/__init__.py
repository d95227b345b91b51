"""avorch - media operation orchestrator for ffmpeg."""

__version__ = "0.1.0"
