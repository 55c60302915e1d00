"""
Scenecast - live scene and ambient audio broadcaster for tabletop game masters.
"""

__version__ = "0.1.0"
