"""Arcade Chat Moderation Service.

Real-time chat for a casual gaming arcade: a global channel with reply
threads, direct messages, AI automod and moderator actions.

Modules:
    - core: Configuration, database, Redis, logging, metrics and tracing
    - modules.chat: Message store, realtime change feed and delivery sessions
    - modules.automod: Moderation oracle and the gate enforcing its verdicts
    - modules.moderation: Moderation log and user ban state
"""

__version__ = "0.1.0"
