"""IRC Bouncer - Relay between IRC networks and a webhook chat platform.

A small async bouncer that:
- Holds one IRC connection per configured network
- Publishes channel traffic on a shared broadcast bus
- Delivers IRC messages to the platform through per-channel webhooks
- Forwards the owner's platform messages back to IRC
"""

__version__ = "0.1.0"
