"""Application modules.

- chat: Global channel, direct messages and live delivery
- automod: AI moderation of chat messages
- moderation: Moderator actions and ban state
"""
