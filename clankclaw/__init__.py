"""
Clank & Claw - Telegram-driven token deployer
"""

__version__ = "2.7.0"
