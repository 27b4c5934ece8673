"""
Support module: tickets with threaded messages, and the public FAQ.
"""
