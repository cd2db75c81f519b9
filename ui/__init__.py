"""Web dashboard for the booking calendar."""
