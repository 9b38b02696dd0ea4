"""
Estimate Tracker backend.

Tracks dental cost estimates from the moment they are sent to the patient
until an appointment is booked or the case is closed.
"""
