"""
SafeWatch - Safety Check-In & Emergency Escalation Engine

Turns unconfirmed safety check-ins, manual SOS presses and AI threat
detections into a single emergency alert that is broadcast to the user's
emergency contacts over email and WhatsApp, with rolling audio evidence.
"""

__version__ = "1.0.0"
__author__ = "SafeWatch Development Team"
