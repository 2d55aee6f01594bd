"""nobatt - suspend a command while the laptop runs on battery"""

__version__ = "0.1.0"
