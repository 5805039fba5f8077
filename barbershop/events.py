"""
Domain events.

Receivers run synchronously inside the sender's database transaction, so a
receiver that raises rolls the whole unit of work back.
"""

from blinker import Namespace

domain_signals = Namespace()

# sender: BookingService, kwargs: booking (Booking)
booking_confirmed = domain_signals.signal("booking-confirmed")
