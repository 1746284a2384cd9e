"""
Domain layer for the QR gateway: wire models, guest portal operations and
best-effort staff notifications.
"""
