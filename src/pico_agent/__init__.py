"""
pico-agent - a conversational agent runtime.
"""

__version__ = "0.1.0"
