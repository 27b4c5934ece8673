"""
Alerts module.

Decides, per recipient role and event type, how the client should surface an
event (sound, vibration, push, toast, urgent modal), persists it as a
notification and publishes it on the recipient's change channel.
"""
