"""
Core domain package: configuration, persistence, the negotiation state
machine and the services built on top of them.
"""
