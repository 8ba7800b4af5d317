"""
OPSGUARD - Authorization and step-up core for the operations console.

Decides whether a user action is permitted, whether it needs freshly proven
identity, and makes sure every sensitive attempt is audited.

All decisions are advisory. The backend re-validates every privileged
operation on its own.
"""

__version__ = "1.0.0"
