"""
Predictive dialer service: call placement, answering-machine detection,
agent assignment and call lifecycle tracking on top of Twilio Voice.
"""

__version__ = "0.1.0"
