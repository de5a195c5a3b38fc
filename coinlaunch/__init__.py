"""
CoinLaunch - mint a token from a social post and reply with its address
"""

__version__ = "0.1.0"
