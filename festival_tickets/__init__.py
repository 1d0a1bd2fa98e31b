"""
Festival Tickets

Upload festival ticket PDFs, extract one ticket per page (showing details via
a vision model, QR code via OpenCV) and browse the resulting screenings.
"""

__version__ = "1.0.0"
