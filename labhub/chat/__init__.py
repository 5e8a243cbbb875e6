"""
Channel-scoped real-time chat: registry, message store and session gateway.
"""
