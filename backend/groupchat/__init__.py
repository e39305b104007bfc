"""Real-time group chat backend.

Modules:
    - identity: user records, password verification, signed access tokens
    - groups: group registry (membership, admins, settings)
    - chat: message log, pins, sessions, broadcast routing, websocket protocol
    - media: uploaded image/video storage
"""
