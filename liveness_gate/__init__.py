"""
Liveness Gate - challenge-based liveness verification engine
"""
__version__ = "1.0.0"
