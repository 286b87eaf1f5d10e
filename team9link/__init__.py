"""
team9link - Team9 chat bridge for agent runtimes
"""

__version__ = "0.1.0"
__logo__ = "🔗"
