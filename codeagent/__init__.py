# FILE: codeagent/__init__.py
"""
codeagent - scripted code-generation agent execution core.

Version: 0.4.0
"""

__version__ = "0.4.0"
