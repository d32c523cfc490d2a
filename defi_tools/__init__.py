"""
DeFi data tools: a rate-limited, cached gateway in front of the 1inch API.
"""
