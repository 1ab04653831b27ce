"""
Chat module: the group-wide channel and one channel per agency.

- Channels are resolved on first visit and created lazily when missing
- Messages are immutable; new ones are pushed to open streams via the change feed
- Sends are optimistic on the client and reconciled by id (see ``timeline``)
"""
