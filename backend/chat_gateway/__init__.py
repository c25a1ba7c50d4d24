"""
Realtime chat gateway: presence tracking and event relay over WebSockets.
"""
