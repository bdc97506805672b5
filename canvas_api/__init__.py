"""AI Collaboration Canvas API"""

__version__ = "0.1.0"
